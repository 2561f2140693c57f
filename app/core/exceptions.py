"""Custom exception hierarchy."""

from enum import Enum


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class StorageError(AppError):
    """Raised when an object storage operation fails."""
    pass


class RenderErrorKind(str, Enum):
    """Whether a render failure is worth retrying."""
    INVALID_INPUT = "invalid_input"
    TRANSIENT = "transient"


class RenderError(AppError):
    """Raised when a document cannot be rasterized."""
    def __init__(
        self,
        message: str,
        kind: RenderErrorKind = RenderErrorKind.TRANSIENT,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind == RenderErrorKind.TRANSIENT


class ClassificationError(AppError):
    """Raised when no classification batch could be processed."""
    pass


class UnparseableResponseError(AppError):
    """Raised when a model response contains no usable JSON payload."""
    pass


class InvalidTransitionError(AppError):
    """Raised when a parse cannot move to the requested status."""
    pass


class RunConflictError(InvalidTransitionError):
    """Raised when another pipeline run already owns the parse."""
    pass


class ParseNotFoundError(AppError):
    """Raised when a parse is not found."""
    pass


class PreviewUnavailableError(AppError):
    """Raised when a parse has no preview archive to serve."""
    pass
