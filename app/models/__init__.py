from app.models.classification import (
    ClassificationResult,
    PackageMetadata,
    PageImage,
    PageRole,
    PageRoleLabel,
    Party,
)
from app.models.extraction import (
    EnrichedPageExtraction,
    PerPageExtraction,
    UniversalExtractionResult,
)
from app.models.parse import ParseStatus
from app.models.reconciliation import MergeResult, ReviewDecision, ValidationReport

__all__ = [
    "ClassificationResult",
    "EnrichedPageExtraction",
    "MergeResult",
    "PackageMetadata",
    "PageImage",
    "PageRole",
    "PageRoleLabel",
    "ParseStatus",
    "Party",
    "PerPageExtraction",
    "ReviewDecision",
    "UniversalExtractionResult",
    "ValidationReport",
]
