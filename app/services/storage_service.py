"""Storage for uploaded media.

Videos go to an S3 bucket (any S3-compatible endpoint works) and are served
from ``Settings.video_base_url``. Thumbnails are kept on local disk under
``ASSETS_ROOT`` and served by the app's ``/assets`` mount.

Every public URL is ``<base>/<key>`` and ``key_from_url`` strips exactly that
base, so the key of a stored object can always be recovered from its URL.
"""
import asyncio
import logging
import secrets
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings
from app.core.exceptions import StoreDeleteError, StoreWriteError, UnsupportedMediaError

logger = logging.getLogger(__name__)

EXT_MAP = {
    "video/mp4": "mp4",
    "image/png": "png",
    "image/jpeg": "jpg",
}

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def extension_for(media_type: str) -> str:
    try:
        return EXT_MAP[media_type]
    except KeyError:
        raise UnsupportedMediaError(f"No file extension known for {media_type}") from None


def random_token() -> str:
    """32 bytes of cryptographic randomness, URL-safe base64 without padding."""
    return secrets.token_urlsafe(32)


def build_video_key(prefix: str, media_type: str) -> str:
    return f"{prefix}/{random_token()}.{extension_for(media_type)}"


def _strip_base(url: str, base: str) -> str | None:
    prefix = base.rstrip("/") + "/"
    if not url.startswith(prefix):
        return None
    key = url[len(prefix):]
    return key or None


class ObjectStore(Protocol):
    """Remote store for processed videos."""

    async def put(self, key: str, body_path: Path, content_type: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    def public_url(self, key: str) -> str:
        ...

    def key_from_url(self, url: str) -> str | None:
        ...


class S3ObjectStore:
    """boto3-backed object store. Blocking calls run in a worker thread."""

    def __init__(self, settings: Settings, client=None):
        self.bucket = settings.S3_BUCKET
        self.base_url = settings.video_base_url
        self._client = client or boto3.client(
            "s3",
            region_name=settings.S3_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            config=Config(
                connect_timeout=10,
                read_timeout=settings.STORAGE_TIMEOUT_SECONDS,
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        )

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_from_url(self, url: str) -> str | None:
        return _strip_base(url, self.base_url)

    def put_object(self, key: str, body_path: Path, content_type: str) -> None:
        try:
            with open(body_path, "rb") as body:
                self._client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error("Object upload failed", extra={"bucket": self.bucket, "key": key, "error": str(e)})
            raise StoreWriteError(f"Failed to upload object: {e}", key=key) from e
        logger.info("Uploaded object", extra={"bucket": self.bucket, "key": key})

    def delete_object(self, key: str) -> None:
        """Delete ``key``; a key that is already gone counts as deleted."""
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_KEY_CODES:
                logger.debug("Object already absent", extra={"bucket": self.bucket, "key": key})
                return
            raise StoreDeleteError(f"Failed to delete object: {e}", key=key) from e
        except BotoCoreError as e:
            raise StoreDeleteError(f"Failed to delete object: {e}", key=key) from e
        logger.info("Deleted object", extra={"bucket": self.bucket, "key": key})

    async def put(self, key: str, body_path: Path, content_type: str) -> None:
        await asyncio.to_thread(self.put_object, key, body_path, content_type)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.delete_object, key)


class LocalAssetStore:
    """Store thumbnails on local disk. Path: {ASSETS_ROOT}/{token}.{ext}"""

    def __init__(self, base_dir: str | Path, url_prefix: str):
        self.base_dir = Path(base_dir).resolve()
        self.url_prefix = url_prefix.rstrip("/")

    def save(self, data: bytes, media_type: str) -> str:
        """Save file and return public URL."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{random_token()}.{extension_for(media_type)}"
        (self.base_dir / filename).write_bytes(data)
        return f"{self.url_prefix}/{filename}"

    def delete(self, url: str) -> bool:
        """Delete file by URL. Returns True if deleted."""
        filename = _strip_base(url, self.url_prefix)
        if not filename or "/" in filename:
            return False
        filepath = self.base_dir / filename
        if not filepath.is_file():
            return False
        filepath.unlink()
        return True
