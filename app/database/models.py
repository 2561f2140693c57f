"""SQLAlchemy models for all database tables."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Float,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Parse(Base):
    """One submitted contract packet and its lifecycle state."""

    __tablename__ = "parses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="PENDING", index=True
    )  # see ParseStatus
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    critical_pages: Mapped[list[int] | None] = mapped_column(JSONType, nullable=True)

    # Transient artifact references, nulled by cleanup
    raw_document_key: Mapped[str | None] = mapped_column(String, nullable=True)
    classification_cache_key: Mapped[str | None] = mapped_column(String, nullable=True)
    render_key: Mapped[str | None] = mapped_column(String, nullable=True)
    preview_key: Mapped[str | None] = mapped_column(String, nullable=True)

    raw_extractions: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType, nullable=True
    )
    canonical_extraction: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )
    confidence_summary: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )
    overall_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validation_warnings: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    active_run_id: Mapped[str | None] = mapped_column(String, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    finalized_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    archived_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )


class EphemeralEntry(Base):
    """Short-lived key-value entry shared across server instances."""

    __tablename__ = "ephemeral_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
