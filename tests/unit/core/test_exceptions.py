import pytest

from contractflow.core.exceptions import (
    AppError,
    ConfigurationError,
    DatabaseConnectionError,
    FileStorageError,
    InvalidStateTransitionError,
    LlmApiError,
    LlmAuthError,
    LlmMalformedResponseError,
    LlmRateLimitedError,
    PdfEmptyError,
    PdfParseFailedError,
    PdfTooLargeError,
    PromptSourceUnavailableError,
    ReviewAlreadyResolvedError,
    ReviewNotFoundError,
    ValidationError,
    WorkflowNotFoundError,
    http_status_for,
)


class TestErrorTaxonomy:

    @pytest.mark.parametrize(
        "error_class,code,retryable",
        [
            (PdfParseFailedError, "PDF_PARSE_FAILED", False),
            (PdfEmptyError, "PDF_EMPTY", False),
            (PdfTooLargeError, "PDF_TOO_LARGE", False),
            (LlmApiError, "LLM_API_ERROR", True),
            (LlmRateLimitedError, "LLM_RATE_LIMITED", True),
            (LlmAuthError, "LLM_AUTH_ERROR", False),
            (LlmMalformedResponseError, "LLM_MALFORMED_RESPONSE", False),
            (InvalidStateTransitionError, "INVALID_STATE_TRANSITION", False),
            (ReviewAlreadyResolvedError, "REVIEW_ALREADY_RESOLVED", False),
            (DatabaseConnectionError, "DB_CONNECTION_ERROR", True),
            (PromptSourceUnavailableError, "PROMPT_SOURCE_UNAVAILABLE", True),
            (FileStorageError, "FILE_STORAGE_ERROR", True),
        ],
    )
    def test_codes_and_retryability(self, error_class, code, retryable):
        error = error_class("boom")

        assert error.code == code
        assert error.retryable is retryable
        assert isinstance(error, AppError)

    def test_to_dict_omits_missing_details(self):
        assert WorkflowNotFoundError("gone").to_dict() == {
            "code": "WORKFLOW_NOT_FOUND",
            "message": "gone",
            "retryable": False,
        }

    def test_to_dict_with_details(self):
        payload = LlmApiError("Groq API returned 502", details="bad gateway").to_dict()

        assert payload["details"] == "bad gateway"
        assert payload["retryable"] is True

    def test_retryable_override(self):
        assert AppError("x", retryable=True).retryable is True
        assert AppError.retryable is False


class TestHttpStatusMapping:

    @pytest.mark.parametrize(
        "error,status",
        [
            (PdfEmptyError("x"), 400),
            (PdfTooLargeError("x"), 400),
            (LlmAuthError("x"), 400),
            (WorkflowNotFoundError("x"), 404),
            (ReviewNotFoundError("x"), 404),
            (InvalidStateTransitionError("x"), 409),
            (ReviewAlreadyResolvedError("x"), 409),
            (ValidationError("x"), 422),
            (LlmApiError("x"), 503),
            (LlmRateLimitedError("x"), 503),
            (DatabaseConnectionError("x"), 503),
            (PromptSourceUnavailableError("x"), 503),
            (LlmMalformedResponseError("x"), 500),
            (ConfigurationError("x"), 500),
        ],
    )
    def test_status(self, error, status):
        assert http_status_for(error) == status
