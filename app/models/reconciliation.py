"""Pydantic models describing reconciler and review gate output."""

from typing import Dict, List

from pydantic import BaseModel, Field

from app.models.extraction import UniversalExtractionResult


class ValidationReport(BaseModel):
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    problem_fields: List[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class MergeResult(BaseModel):
    """Canonical record plus the evidence of how it was assembled."""

    result: UniversalExtractionResult
    provenance: Dict[str, int] = Field(default_factory=dict)
    field_confidences: Dict[str, float] = Field(default_factory=dict)
    confidence: float = 0.0
    handwriting_detected: bool = False
    merge_log: List[str] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)


class ReviewDecision(BaseModel):
    overall_confidence: float
    needs_review: bool
    reasons: List[str] = Field(default_factory=list)
