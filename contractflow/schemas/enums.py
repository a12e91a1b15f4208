"""Wire-visible status literals shared by models, services and the API."""

from enum import Enum


class WorkflowState(str, Enum):
    PENDING = "pending"
    PARSING_PDF = "parsing_pdf"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    REVIEW_REQUIRED = "review_required"
    VALIDATED = "validated"
    COMPARING = "comparing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CORRECTED = "corrected"
    TIMED_OUT = "timed_out"


class ReviewAction(str, Enum):
    """Actions a reviewer (or the timeout sweep) can take on a pending task."""

    APPROVE = "approve"
    REJECT = "reject"
    CORRECT = "correct"
    TIMEOUT = "timeout"
