"""Custom exception hierarchy.

Every error that can cross a component boundary carries a stable ``code``
and a ``retryable`` flag. ``to_dict()`` renders the wire payload
``{code, message, details, retryable}``.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base exception for application errors."""

    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        original_error: Optional[Exception] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.original_error = original_error
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# PDF input problems


class PdfParseFailedError(AppError):
    """Raised when the uploaded bytes cannot be read as a PDF."""
    code = "PDF_PARSE_FAILED"


class PdfEmptyError(AppError):
    """Raised when a PDF contains no extractable text."""
    code = "PDF_EMPTY"


class PdfTooLargeError(AppError):
    """Raised when a PDF exceeds the configured size limit."""
    code = "PDF_TOO_LARGE"


# Language model


class LlmApiError(AppError):
    """Raised when the model API call fails for a transient reason."""
    code = "LLM_API_ERROR"
    retryable = True


class LlmRateLimitedError(LlmApiError):
    code = "LLM_RATE_LIMITED"
    retryable = True


class LlmAuthError(AppError):
    code = "LLM_AUTH_ERROR"


class LlmMalformedResponseError(AppError):
    """Raised when the model output is not a JSON object after the in-line retry."""
    code = "LLM_MALFORMED_RESPONSE"


# Request shape


class ValidationError(AppError):
    """Raised when input validation fails."""
    code = "VALIDATION_ERROR"


# Not found


class NotFoundError(AppError):
    code = "NOT_FOUND"


class WorkflowNotFoundError(NotFoundError):
    code = "WORKFLOW_NOT_FOUND"


class ContractNotFoundError(NotFoundError):
    code = "CONTRACT_NOT_FOUND"


class ReviewNotFoundError(NotFoundError):
    code = "REVIEW_NOT_FOUND"


class ProviderNotFoundError(NotFoundError):
    code = "PROVIDER_NOT_FOUND"


class VerticalNotFoundError(NotFoundError):
    code = "VERTICAL_NOT_FOUND"


class StoredFileNotFoundError(NotFoundError):
    """Raised when a stored PDF is missing from its recorded path."""
    code = "FILE_NOT_FOUND"


# Conflicts


class ConflictError(AppError):
    code = "CONFLICT"


class InvalidStateTransitionError(ConflictError):
    code = "INVALID_STATE_TRANSITION"


class ReviewAlreadyResolvedError(ConflictError):
    code = "REVIEW_ALREADY_RESOLVED"


# Infrastructure


class DatabaseConnectionError(AppError):
    """Raised when a database operation fails."""
    code = "DB_CONNECTION_ERROR"
    retryable = True


class PromptSourceUnavailableError(AppError):
    """Raised when no prompt can be fetched and none is cached."""
    code = "PROMPT_SOURCE_UNAVAILABLE"
    retryable = True


class FileStorageError(AppError):
    code = "FILE_STORAGE_ERROR"
    retryable = True


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    code = "CONFIGURATION_ERROR"


CALLER_INPUT_CODES = frozenset(
    {
        PdfParseFailedError.code,
        PdfEmptyError.code,
        PdfTooLargeError.code,
        LlmAuthError.code,
    }
)


def http_status_for(error: AppError) -> int:
    """Map an application error to the HTTP status used at API boundaries."""
    if error.code in CALLER_INPUT_CODES:
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, ValidationError):
        return 422
    if error.retryable:
        return 503
    return 500
