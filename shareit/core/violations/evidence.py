"""Evidence file validation.

Every file in a request is checked before anything is written or uploaded,
so a single bad attachment rejects the whole request.
"""

from __future__ import annotations

from pathlib import PurePath

from pydantic import BaseModel, ConfigDict

from shareit.common.enums import EvidenceFileType
from shareit.common.exceptions import BadRequestError
from shareit.config import settings

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv", ".wmv"})

_MB = 1024 * 1024


class EvidenceFile(BaseModel):
    """An evidence upload held in memory until the whole request validates."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content_type: str = "application/octet-stream"
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return PurePath(self.filename).suffix.lower()


def classify_evidence(file: EvidenceFile) -> EvidenceFileType:
    if file.extension in IMAGE_EXTENSIONS:
        return EvidenceFileType.IMAGE
    if file.extension in VIDEO_EXTENSIONS:
        return EvidenceFileType.VIDEO
    raise BadRequestError(
        f"File '{file.filename}' has invalid format. Only images "
        "(JPG, PNG, GIF, WebP, BMP) or videos (MP4, MOV, AVI, MKV, WebM, FLV, WMV) are accepted."
    )


def max_size_for(file_type: EvidenceFileType) -> int:
    if file_type == EvidenceFileType.IMAGE:
        return settings.EVIDENCE_IMAGE_MAX_MB * _MB
    return settings.EVIDENCE_VIDEO_MAX_MB * _MB


def validate_evidence_file(file: EvidenceFile) -> EvidenceFileType:
    file_type = classify_evidence(file)
    limit = max_size_for(file_type)
    if file.size > limit:
        raise BadRequestError(
            f"File '{file.filename}' exceeds the allowed size of {limit // _MB}MB. "
            f"Size: {file.size / _MB:.1f}MB"
        )
    if file.size == 0:
        raise BadRequestError(f"File '{file.filename}' is empty")
    return file_type


def validate_evidence_batch(
    files: list[EvidenceFile], require_at_least_one: bool = False
) -> list[EvidenceFileType]:
    if require_at_least_one and not files:
        raise BadRequestError("At least one image or video of evidence is required")
    return [validate_evidence_file(f) for f in files]
