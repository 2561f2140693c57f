from app.schemas.common import ApiResponse, ErrorDetail, ResponseMeta
from app.schemas.parses import (
    BulkDeleteRequest,
    CleanupResponse,
    ParseResponse,
    ParseSubmissionResponse,
    ParseSummary,
)

__all__ = [
    "ApiResponse",
    "BulkDeleteRequest",
    "CleanupResponse",
    "ErrorDetail",
    "ParseResponse",
    "ParseSubmissionResponse",
    "ParseSummary",
    "ResponseMeta",
]
