"""Custom exception hierarchy.

Every pipeline failure carries an ``ErrorKind`` so retry and escalation
decisions switch on the classification instead of on message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of pipeline failures."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    INVALID_JSON = "invalid_json"
    SCHEMA_VIOLATION = "schema_violation"
    NOT_FOUND = "not_found"
    HTTP_ERROR = "http_error"
    UNSUPPORTED_SOURCE = "unsupported_source"
    FATAL = "fatal"


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing.

    Always fatal for the run: continuing would store corrupt data.
    """
    pass


class EmbeddingDimensionError(ConfigurationError):
    """Raised when the embedding model returns a vector of unexpected size."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}. "
            "Check GEMINI_EMBEDDING_MODEL and GEMINI_EMBEDDING_DIMENSIONS."
        )
        self.expected = expected
        self.actual = actual


class PipelineError(AppError):
    """Base exception for per-document pipeline errors."""

    kind: ErrorKind = ErrorKind.FATAL


# Document fetching

class DocumentFetchError(PipelineError):
    """Raised when a document cannot be downloaded."""
    kind = ErrorKind.HTTP_ERROR


class DocumentNotFoundError(DocumentFetchError):
    """Raised when the referenced document does not exist."""
    kind = ErrorKind.NOT_FOUND


class HttpStatusError(DocumentFetchError):
    """Raised on a non-success HTTP status while downloading."""

    def __init__(self, message: str, status_code: int, original_error: Exception = None):
        super().__init__(message, original_error)
        self.status_code = status_code


class FetchTimeoutError(DocumentFetchError):
    """Raised when a download exceeds its time budget."""
    kind = ErrorKind.TIMEOUT


class UnsupportedSourceError(DocumentFetchError):
    """Raised when a document URL matches no known source kind."""
    kind = ErrorKind.UNSUPPORTED_SOURCE


class StoragePathError(UnsupportedSourceError):
    """Raised when an object-storage URL has no resolvable path."""


# Structured extraction

class ExtractionError(PipelineError):
    """Base exception for structured extraction failures."""
    pass


class InvalidJsonError(ExtractionError):
    """The model response was not parseable JSON."""
    kind = ErrorKind.INVALID_JSON


class SchemaViolationError(ExtractionError):
    """The model response did not match the extraction schema."""
    kind = ErrorKind.SCHEMA_VIOLATION


class ExtractionTimeoutError(ExtractionError):
    """A model invocation exceeded its timeout."""
    kind = ErrorKind.TIMEOUT


class RateLimitedError(ExtractionError):
    """The model provider rejected the call for rate limiting."""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, original_error: Exception = None, status_code: Optional[int] = None):
        super().__init__(message, original_error)
        self.status_code = status_code
