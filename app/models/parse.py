"""Parse lifecycle status values."""

from enum import Enum


class ParseStatus(str, Enum):
    PENDING = "PENDING"
    RENDERED = "RENDERED"
    COMPLETED = "COMPLETED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    RENDER_FAILED = "RENDER_FAILED"
    EXTRACT_FAILED = "EXTRACT_FAILED"
    ARCHIVED = "ARCHIVED"

    @property
    def is_failure(self) -> bool:
        return self in (ParseStatus.RENDER_FAILED, ParseStatus.EXTRACT_FAILED)

    @property
    def is_finalized(self) -> bool:
        return self in (ParseStatus.COMPLETED, ParseStatus.NEEDS_REVIEW, ParseStatus.ARCHIVED)

    @property
    def is_active(self) -> bool:
        return self in (ParseStatus.PENDING, ParseStatus.RENDERED)
