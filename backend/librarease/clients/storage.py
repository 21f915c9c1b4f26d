"""S3-compatible object store: FileStorage implementation.

boto3 is synchronous; every call is pushed onto a worker thread so the event
loop never blocks on network I/O.
"""

import asyncio
import logging
import time
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from librarease.clients.base import FileStorage
from librarease.services.errors import UpstreamError

logger = logging.getLogger(__name__)


class S3FileStorage(FileStorage):
    """S3 / MinIO implementation of FileStorage."""

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        temp_path: str = "temp",
        public_path: str = "public",
        presign_expire_seconds: int = 900,
    ):
        self.bucket = bucket
        self.temp_path = temp_path.strip("/")
        self.public_path = public_path.strip("/")
        self.presign_expire_seconds = presign_expire_seconds

        config = Config(
            region_name=region,
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
            connect_timeout=10,
            read_timeout=60,
        )
        self.client = boto3.client(
            "s3",
            config=config,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )
        logger.info(f"S3FileStorage initialized: region={region}, bucket={bucket}")

    @classmethod
    def from_settings(cls, settings) -> "S3FileStorage":
        return cls(
            bucket=settings.storage_bucket,
            region=settings.storage_region,
            endpoint_url=settings.storage_endpoint_url,
            access_key=settings.storage_access_key,
            secret_key=settings.storage_secret_key,
            temp_path=settings.storage_temp_path,
            public_path=settings.storage_public_path,
            presign_expire_seconds=settings.presign_expire_minutes * 60,
        )

    async def _call(self, method: str, **kwargs):
        try:
            return await asyncio.to_thread(getattr(self.client, method), **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 {method} failed for s3://{self.bucket}/{kwargs.get('Key', '')}: {e}")
            raise UpstreamError(f"storage {method} failed: {e}") from e

    # ── FileStorage implementation ───────────────────────────────

    async def upload_file(self, path: str, data: bytes) -> None:
        await self._call("put_object", Bucket=self.bucket, Key=path, Body=data)

    async def read_file(self, path: str) -> bytes:
        response = await self._call("get_object", Bucket=self.bucket, Key=path)
        return await asyncio.to_thread(response["Body"].read)

    async def presigned_get_url(self, path: str) -> str:
        return await self._call(
            "generate_presigned_url",
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=self.presign_expire_seconds,
        )

    async def temp_upload_url(self, name: str, user_id: Optional[str] = None) -> tuple[str, str]:
        """Temp objects live at ``{temp}/{user_prefix8}-{epoch_seconds}/{name}``."""
        prefix = (user_id or "anon")[:8]
        path = f"{self.temp_path}/{prefix}-{int(time.time())}/{name}"
        url = await self._call(
            "generate_presigned_url",
            ClientMethod="put_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=self.presign_expire_seconds,
        )
        return path, url

    async def move_temp_to_public(self, source: str, dest_dir: str) -> str:
        if not source.startswith(f"{self.temp_path}/"):
            source = f"{self.temp_path}/{source.lstrip('/')}"
        name = source.rsplit("/", 1)[-1]
        dest = f"{self.public_path}/{dest_dir.strip('/')}/{name}"
        await self._call(
            "copy_object",
            Bucket=self.bucket,
            Key=dest,
            CopySource={"Bucket": self.bucket, "Key": source},
        )
        await self._call("delete_object", Bucket=self.bucket, Key=source)
        return dest
