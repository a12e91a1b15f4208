"""Request and response models for the workflow and review routes."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from contractflow.schemas.enums import ReviewAction, ReviewStatus, WorkflowState


class ExtractRequest(BaseModel):
    """Body of ``POST /workflows/{id}/extract``."""

    pdf_text: str = Field(..., min_length=1, description="Plain text parsed from the contract PDF")


class ReviewActionRequest(BaseModel):
    """Body of ``POST /workflows/{id}/review``."""

    action: ReviewAction
    corrected_data: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _corrected_data_required_for_correct(self) -> "ReviewActionRequest":
        if self.action == ReviewAction.CORRECT and self.corrected_data is None:
            raise ValueError("corrected_data is required when action is 'correct'")
        return self


class ProcessStartResponse(BaseModel):
    workflow_id: UUID
    temporal_workflow_id: str
    state: WorkflowState


class IngestResponse(BaseModel):
    workflow_id: UUID
    vertical_id: UUID
    state: WorkflowState
    pdf_text: str
    created_at: Optional[datetime] = None


class ExtractResponse(BaseModel):
    workflow_id: UUID
    state: WorkflowState
    extracted_data: Dict[str, Any]
    llm_confidence: float
    final_confidence: float
    needs_review: bool
    contract_id: UUID
    review_task_id: Optional[UUID] = None


class CompareResponse(BaseModel):
    workflow_id: UUID
    state: WorkflowState
    comparison: Dict[str, Any]


class ReviewActionResponse(BaseModel):
    workflow_id: UUID
    review_task_id: UUID
    review_status: ReviewStatus
    state: WorkflowState


class ContractResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_id: UUID
    vertical_id: UUID
    provider_id: Optional[UUID] = None
    extracted_data: Dict[str, Any]
    llm_confidence: float
    final_confidence: float


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    vertical_id: UUID
    provider_id: Optional[UUID] = None
    state: WorkflowState
    retry_count: int
    error_message: Optional[str] = None
    pdf_storage_path: str
    pdf_filename: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    contract: Optional[ContractResponse] = None


class StateLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_state: Optional[WorkflowState] = None
    to_state: WorkflowState
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="transition_metadata")
    created_at: Optional[datetime] = None


class ReviewTaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_id: UUID
    contract_id: UUID
    status: ReviewStatus
    corrected_data: Optional[Dict[str, Any]] = None
    reviewer_notes: Optional[str] = None
    timeout_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None


class TimeoutSweepResponse(BaseModel):
    timed_out: List[UUID]
    failed: List[UUID]
