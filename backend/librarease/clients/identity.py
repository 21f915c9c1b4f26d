"""Identity Toolkit REST client: IdentityProvider implementation.

Handles: account creation, ID-token verification (``accounts:lookup``) and
custom claims. Claims updates need an admin bearer token, read once from the
configured credentials file.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import httpx

from librarease.clients.base import IdentityProvider
from librarease.services.errors import UnauthorizedError, UpstreamError

logger = logging.getLogger(__name__)


class RestIdentityProvider(IdentityProvider):
    """Identity Toolkit v1 implementation of IdentityProvider."""

    def __init__(self, base_url: str, api_key: Optional[str], credentials_file: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._admin_token: Optional[str] = None
        if credentials_file:
            self._admin_token = Path(credentials_file).read_text().strip()

    async def _post(self, endpoint: str, body: dict, admin: bool = False) -> dict:
        headers = {}
        if admin and self._admin_token:
            headers["Authorization"] = f"Bearer {self._admin_token}"
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(
                f"{self.base_url}/{endpoint}",
                params={"key": self.api_key} if self.api_key else None,
                headers=headers,
                json=body,
            )
            resp.raise_for_status()
            return resp.json()

    # ── IdentityProvider implementation ──────────────────────────

    async def create_user(self, email: str, password: str, name: str) -> str:
        try:
            data = await self._post("accounts:signUp", {
                "email": email,
                "password": password,
                "displayName": name,
                "returnSecureToken": False,
            })
        except httpx.HTTPError as e:
            raise UpstreamError(f"identity create_user failed: {e}") from e
        return data["localId"]

    async def verify_id_token(self, token: str) -> str:
        try:
            data = await self._post("accounts:lookup", {"idToken": token})
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (400, 401, 403):
                raise UnauthorizedError("invalid id token") from e
            raise UpstreamError(f"identity verify failed: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"identity verify failed: {e}") from e

        users = data.get("users") or []
        if not users:
            raise UnauthorizedError("invalid id token")
        return users[0]["localId"]

    async def set_custom_claims(self, uid: str, claims: dict) -> None:
        try:
            await self._post(
                "accounts:update",
                {"localId": uid, "customAttributes": json.dumps(claims)},
                admin=True,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"identity set_custom_claims failed: {e}") from e
        logger.info(f"Custom claims set for uid={uid}")
