"""Temp uploads: hand the client a presigned PUT URL under the temp root."""

import logging
from dataclasses import dataclass
from typing import Optional

from librarease.clients.base import FileStorage
from librarease.entities import Actor
from librarease.services.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class TempUpload:
    path: str
    url: str


async def publish_temp(storage: Optional[FileStorage], temp_path: str, dest_dir: str) -> Optional[str]:
    """Move a temp upload under ``dest_dir``; None if there is no storage or the move fails."""
    if storage is None:
        return None
    try:
        return await storage.move_temp_to_public(temp_path, dest_dir)
    except UpstreamError as e:
        logger.warning(f"Upload {temp_path} not published to {dest_dir}: {e}")
        return None


class FileService:
    def __init__(self, storage: FileStorage):
        self.storage = storage

    async def temp_upload(self, actor: Actor, name: str) -> TempUpload:
        name = name.replace("\\", "/").rsplit("/", 1)[-1]
        if not name:
            raise ValidationError("name is required")
        path, url = await self.storage.temp_upload_url(name, user_id=str(actor.user_id))
        return TempUpload(path=path, url=url)
