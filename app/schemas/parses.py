"""Request and response schemas for the parses API."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ParseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    file_name: str
    status: str
    page_count: Optional[int] = None
    critical_pages: Optional[List[int]] = None
    needs_review: bool = False
    overall_confidence: Optional[float] = None
    canonical_extraction: Optional[Dict[str, Any]] = None
    confidence_summary: Optional[Dict[str, Any]] = None
    validation_warnings: Optional[List[str]] = None
    error_message: Optional[str] = None
    attempt_count: int = 0
    has_preview: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @classmethod
    def from_parse(cls, parse) -> "ParseResponse":
        response = cls.model_validate(parse)
        response.has_preview = parse.preview_key is not None
        return response


class ParseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    status: str
    needs_review: bool = False
    overall_confidence: Optional[float] = None
    created_at: Optional[datetime] = None


class ParseSubmissionResponse(BaseModel):
    parse_id: UUID
    workflow_id: str
    status: str


class BulkDeleteRequest(BaseModel):
    parse_ids: List[UUID] = Field(..., min_length=1, max_length=100)


class CleanupResponse(BaseModel):
    parse_id: UUID
    deleted_paths: List[str] = Field(default_factory=list)
    cache_cleared: bool = False
    errors: List[str] = Field(default_factory=list)
    skipped_reason: Optional[str] = None


class PreviewResponse(BaseModel):
    parse_id: UUID
    url: str
    expires_in: int
    page_count: Optional[int] = None
