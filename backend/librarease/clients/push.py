"""Push delivery: provider senders plus a dispatcher that routes tokens.

Only FCM has a sender; tokens for providers without one are skipped.
"""

import logging
from collections import defaultdict
from typing import Iterable, Optional

import httpx

from librarease.clients.base import InvalidTokens, PushMessage, PushResult, PushSender
from librarease.entities import PushProvider, PushToken
from librarease.services.errors import UpstreamError

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"

# FCM result errors meaning the token will never work again
_DEAD_TOKEN_ERRORS = {"NotRegistered", "InvalidRegistration", "MismatchSenderId"}


class FcmSender(PushSender):
    """Firebase Cloud Messaging (HTTP) sender."""

    provider = PushProvider.FCM

    def __init__(self, server_key: str, url: str = FCM_SEND_URL):
        self.server_key = server_key
        self.url = url

    async def send(self, message: PushMessage) -> PushResult:
        if not message.tokens:
            return PushResult()

        body = {
            "registration_ids": message.tokens,
            "notification": {"title": message.title, "body": message.body},
            "data": message.data,
        }
        async with httpx.AsyncClient(timeout=10.0) as client:
            try:
                resp = await client.post(
                    self.url,
                    headers={"Authorization": f"key={self.server_key}"},
                    json=body,
                )
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise UpstreamError(f"fcm send failed: {e}") from e
            data = resp.json()

        result = PushResult()
        for token, item in zip(message.tokens, data.get("results", [])):
            if "message_id" in item:
                result.sent += 1
            elif item.get("error") in _DEAD_TOKEN_ERRORS:
                result.invalid_tokens.append(token)
        return result


class PushDispatcher:
    """Groups a user's tokens by provider and hands each group to its sender."""

    def __init__(self, senders: Optional[Iterable[PushSender]] = None):
        self._senders: dict[PushProvider, PushSender] = {}
        for sender in senders or ():
            self.register(sender)

    def register(self, sender: PushSender) -> None:
        self._senders[sender.provider] = sender

    async def send(self, tokens: list[PushToken], title: str, body: str,
                   data: Optional[dict[str, str]] = None) -> int:
        """Send to every token; returns the delivered count.

        Raises ``InvalidTokens`` once all providers have been tried if any
        provider rejected tokens permanently.
        """
        by_provider: dict[PushProvider, list[str]] = defaultdict(list)
        for t in tokens:
            by_provider[t.provider].append(t.token)

        sent = 0
        invalid: list[str] = []
        for provider, group in by_provider.items():
            sender = self._senders.get(provider)
            if sender is None:
                logger.info(f"No push sender for provider={provider.value}, skipping {len(group)} token(s)")
                continue
            result = await sender.send(PushMessage(title=title, body=body, tokens=group, data=data or {}))
            sent += result.sent
            invalid.extend(result.invalid_tokens)

        if invalid:
            raise InvalidTokens(invalid)
        return sent
