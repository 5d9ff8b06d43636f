"""Media storage: local content root with an optional S3-compatible mirror."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import UploadFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PUBLIC_PREFIX = "/uploads"


class FileTooLargeError(ValueError):
    def __init__(self, max_bytes: int):
        super().__init__(f"File too large. Max upload size is {max_bytes // (1024 * 1024)}MB.")
        self.max_bytes = max_bytes


@dataclass
class StoredFile:
    filename: str
    path: Path
    size_bytes: int
    content_type: Optional[str]


def sanitize_filename(filename: Optional[str], default: str = "upload") -> str:
    base = os.path.basename(filename or default)
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base)
    return safe or default


def remove_path(path: Path) -> None:
    """Best-effort removal of a file; failures are logged."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not delete %s: %s", path, exc)


def _now_ms() -> int:
    return int(time.time() * 1000)


class MediaStorage:
    """
    Stores uploaded media and persisted video frames under ``root`` and
    serves them from ``/uploads/<filename>``. When a bucket is configured the
    same relative key is mirrored to object storage and its public URL wins.
    """

    def __init__(
        self,
        root: str | Path,
        bucket: Optional[str] = None,
        s3_client: Any = None,
        public_base_url: Optional[str] = None,
        key_prefix: str = "uploads",
    ):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.bucket = bucket or None
        self._s3 = s3_client if self.bucket else None
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.key_prefix = key_prefix.strip("/")

    @classmethod
    def from_settings(cls, settings) -> "MediaStorage":
        bucket = (settings.OBJECT_STORAGE_BUCKET or "").strip()
        s3_client = None
        if bucket:
            s3_client = boto3.client(
                "s3",
                endpoint_url=settings.OBJECT_STORAGE_ENDPOINT_URL or None,
                aws_access_key_id=settings.OBJECT_STORAGE_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.OBJECT_STORAGE_SECRET_ACCESS_KEY or None,
            )
            logger.info("Object storage mirror enabled for bucket %s", bucket)
        else:
            logger.info("OBJECT_STORAGE_BUCKET not set, using local storage only")
        return cls(
            root=settings.UPLOAD_DIR,
            bucket=bucket,
            s3_client=s3_client,
            public_base_url=settings.OBJECT_STORAGE_PUBLIC_BASE_URL,
            key_prefix=settings.OBJECT_STORAGE_PREFIX,
        )

    @property
    def mirrored(self) -> bool:
        return self._s3 is not None

    def path_for(self, filename: str) -> Path:
        return self.root / os.path.basename(filename)

    def object_key(self, filename: str) -> str:
        return f"{self.key_prefix}/{filename}" if self.key_prefix else filename

    def public_url(self, filename: str) -> str:
        if self.mirrored:
            base = self.public_base_url or f"https://{self.bucket}.s3.amazonaws.com"
            return f"{base}/{self.object_key(filename)}"
        return f"{PUBLIC_PREFIX}/{filename}"

    def upload_filename(self, original_name: Optional[str]) -> str:
        return f"{_now_ms()}-{sanitize_filename(original_name)}"

    def frame_filename(self, index: int) -> str:
        return f"frame-{_now_ms()}-{index}.jpg"

    async def save_upload(self, file: UploadFile, max_bytes: int) -> StoredFile:
        """Stream an uploaded file to disk, enforcing ``max_bytes``."""
        filename = self.upload_filename(file.filename)
        while self.path_for(filename).exists():
            filename = f"{_now_ms()}-{os.urandom(3).hex()}-{sanitize_filename(file.filename)}"
        destination = self.path_for(filename)

        total_size = 0
        try:
            with destination.open("wb") as out:
                while True:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    total_size += len(chunk)
                    if total_size > max_bytes:
                        raise FileTooLargeError(max_bytes)
                    out.write(chunk)
        except BaseException:
            remove_path(destination)
            raise
        finally:
            await file.close()

        return StoredFile(
            filename=filename,
            path=destination,
            size_bytes=total_size,
            content_type=(file.content_type or "").lower() or None,
        )

    def persist_frame(self, frame_path: str | Path, index: int) -> str:
        """Copy a scratch frame into the content root under a unique name."""
        filename = self.frame_filename(index)
        destination = self.path_for(filename)
        while destination.exists():
            filename = f"frame-{_now_ms()}-{index}-{os.urandom(3).hex()}.jpg"
            destination = self.path_for(filename)
        shutil.copy2(frame_path, destination)
        return filename

    def _put_object(self, filename: str) -> None:
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        self._s3.upload_file(
            str(self.path_for(filename)),
            self.bucket,
            self.object_key(filename),
            ExtraArgs={"ContentType": content_type, "CacheControl": "public, max-age=31536000"},
        )

    async def publish(self, filename: str) -> str:
        """Mirror a stored file to object storage (when configured) and return its URL."""
        if self.mirrored:
            await asyncio.to_thread(self._put_object, filename)
            logger.info("Uploaded to object storage: %s", self.object_key(filename))
        return self.public_url(filename)

    async def delete(self, filename: Optional[str]) -> None:
        """Best-effort removal of the local file and its mirrored copy."""
        if not filename:
            return
        remove_path(self.path_for(filename))
        if not self.mirrored:
            return
        try:
            await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=self.object_key(filename))
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Object storage delete failed for %s: %s", filename, exc)
