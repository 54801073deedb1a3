"""Custom exception classes for the Atlas ingestion pipeline."""

from typing import Any, Dict, Optional


class IngestionException(Exception):
    """Base exception for all Atlas ingestion errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ConfigurationError(IngestionException):
    """Exception raised for invalid chunking or service parameters."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=400,
            code="CONFIGURATION_ERROR",
            details=details,
        )


class ParseError(IngestionException):
    """Exception raised when a source file cannot be read or yields no text."""

    def __init__(
        self,
        message: str = "Document parsing failed",
        file_path: Optional[str] = None,
        file_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if file_path:
            error_details["file_path"] = file_path
        if file_type:
            error_details["file_type"] = file_type
        super().__init__(
            message=message,
            status_code=422,
            code="PARSE_ERROR",
            details=error_details,
        )


class EmbeddingServiceError(IngestionException):
    """Exception raised for network or service failures of the embedding endpoint (retryable)."""

    def __init__(
        self,
        message: str = "Embedding service request failed",
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(
            message=message,
            status_code=502,
            code="EMBEDDING_SERVICE_ERROR",
            details=error_details,
        )


class TextValidationError(IngestionException):
    """Exception raised when a text is rejected locally before any embedding call."""

    def __init__(
        self,
        message: str = "Text cannot be embedded",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=422,
            code="TEXT_VALIDATION_ERROR",
            details=details,
        )


class DimensionMismatchError(IngestionException):
    """Exception raised when a vector does not have the configured dimension (not retryable)."""

    def __init__(
        self,
        expected: int,
        actual: int,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        error_details["expected_dimension"] = expected
        error_details["actual_dimension"] = actual
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=message or f"Embedding dimension mismatch. Expected {expected}, got {actual}",
            status_code=502,
            code="DIMENSION_MISMATCH",
            details=error_details,
        )


class ConcurrencyConflictError(IngestionException):
    """Exception raised when a conflicting job is already in flight."""

    def __init__(
        self,
        message: str = "Operation already in progress",
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if resource:
            error_details["resource"] = resource
        if resource_id:
            error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            status_code=409,
            code="CONCURRENCY_CONFLICT",
            details=error_details,
        )


class NotFoundError(IngestionException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource} not found"
        if resource_id:
            message += f": {resource_id}"
        error_details = details or {}
        error_details["resource"] = resource
        if resource_id:
            error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            status_code=404,
            code="NOT_FOUND",
            details=error_details,
        )


class IndexIOError(IngestionException):
    """Exception raised when a vector index cannot be loaded or saved."""

    def __init__(
        self,
        message: str = "Vector index I/O failed",
        project_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if project_id:
            error_details["project_id"] = project_id
        super().__init__(
            message=message,
            status_code=500,
            code="INDEX_IO_ERROR",
            details=error_details,
        )


class DatabaseError(IngestionException):
    """Exception raised for relational store failures."""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="DATABASE_ERROR",
            details=details,
        )
