from datetime import timedelta
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from temporalio.client import Client as TemporalClient

from contractflow.api.dependencies import (
    get_contract_pipeline,
    get_contract_repository,
    get_review_manager,
    get_state_machine,
)
from contractflow.core.config import settings
from contractflow.core.temporal_client import get_temporal_client
from contractflow.repositories.contract_repository import ContractRepository
from contractflow.schemas.common import ApiResponse
from contractflow.schemas.workflows import (
    CompareResponse,
    ContractResponse,
    ExtractRequest,
    ExtractResponse,
    IngestResponse,
    ProcessStartResponse,
    ReviewActionRequest,
    ReviewActionResponse,
    StateLogEntryResponse,
    WorkflowResponse,
)
from contractflow.services.pipeline.contract_pipeline import ContractPipeline
from contractflow.services.review.review_task_manager import ReviewTaskManager
from contractflow.services.workflow.state_machine import WorkflowStateMachine
from contractflow.temporal.constants import DEFAULT_WORKFLOW_TIMEOUT_SECONDS, PROCESS_CONTRACT_WORKFLOW
from contractflow.utils.logging import get_logger
from contractflow.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/ingest",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a contract PDF and parse its text",
    operation_id="ingest_contract",
)
async def ingest_contract(
    request: Request,
    pipeline: Annotated[ContractPipeline, Depends(get_contract_pipeline)],
    file: UploadFile = File(...),
    vertical_slug: str = Form(...),
    provider_slug: Optional[str] = Form(None),
) -> ApiResponse:
    """Create a workflow for the upload, store the file and extract its text."""
    pdf_bytes = await file.read()
    workflow = await pipeline.ingest(pdf_bytes, vertical_slug, file.filename, provider_slug)
    text = await pipeline.parse_document(workflow.id, pdf_bytes)
    workflow = await pipeline.state_machine.get_workflow(workflow.id)

    data = IngestResponse(
        workflow_id=workflow.id,
        vertical_id=workflow.vertical_id,
        state=workflow.state,
        pdf_text=text,
        created_at=workflow.created_at,
    )
    return create_api_response(data=data, message="Contract ingested", request=request)


@router.post(
    "/process",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a contract PDF and process it in the background",
    operation_id="process_contract",
)
async def process_contract(
    request: Request,
    pipeline: Annotated[ContractPipeline, Depends(get_contract_pipeline)],
    temporal_client: Annotated[TemporalClient, Depends(get_temporal_client)],
    file: UploadFile = File(...),
    vertical_slug: str = Form(...),
    provider_slug: Optional[str] = Form(None),
) -> ApiResponse:
    """Store the upload and start ``ProcessContractWorkflow`` on Temporal."""
    pdf_bytes = await file.read()
    workflow = await pipeline.ingest(pdf_bytes, vertical_slug, file.filename, provider_slug)

    temporal_workflow_id = f"contract-{workflow.id}"
    await temporal_client.start_workflow(
        PROCESS_CONTRACT_WORKFLOW,
        {"workflow_id": str(workflow.id)},
        id=temporal_workflow_id,
        task_queue=settings.temporal.task_queue,
        execution_timeout=timedelta(seconds=DEFAULT_WORKFLOW_TIMEOUT_SECONDS),
    )
    LOGGER.info(
        "Started contract processing",
        extra={"workflow_id": str(workflow.id), "temporal_workflow_id": temporal_workflow_id},
    )

    data = ProcessStartResponse(
        workflow_id=workflow.id,
        temporal_workflow_id=temporal_workflow_id,
        state=workflow.state,
    )
    return create_api_response(data=data, message="Contract processing started", request=request)


@router.post(
    "/{workflow_id}/extract",
    response_model=ApiResponse,
    summary="Extract and validate contract data",
    operation_id="extract_contract",
)
async def extract_contract(
    request: Request,
    workflow_id: UUID,
    payload: ExtractRequest,
    pipeline: Annotated[ContractPipeline, Depends(get_contract_pipeline)],
) -> ApiResponse:
    outcome = await pipeline.extract_and_validate(workflow_id, payload.pdf_text)

    data = ExtractResponse(
        workflow_id=workflow_id,
        state=outcome.workflow.state,
        extracted_data=outcome.contract.extracted_data,
        llm_confidence=float(outcome.contract.llm_confidence),
        final_confidence=outcome.validation.final_confidence,
        needs_review=outcome.validation.needs_review,
        contract_id=outcome.contract.id,
        review_task_id=outcome.review_task.id if outcome.review_task else None,
    )
    message = "Review required" if outcome.validation.needs_review else "Contract validated"
    return create_api_response(data=data, message=message, request=request)


@router.post(
    "/{workflow_id}/compare",
    response_model=ApiResponse,
    summary="Compare tariffs and complete the workflow",
    operation_id="compare_tariffs",
)
async def compare_tariffs(
    request: Request,
    workflow_id: UUID,
    pipeline: Annotated[ContractPipeline, Depends(get_contract_pipeline)],
) -> ApiResponse:
    outcome = await pipeline.compare(workflow_id)
    data = CompareResponse(workflow_id=workflow_id, state=outcome.workflow.state, comparison=outcome.comparison)
    return create_api_response(data=data, message="Comparison completed", request=request)


@router.post(
    "/{workflow_id}/review",
    response_model=ApiResponse,
    summary="Resolve the pending review of a workflow",
    operation_id="review_workflow",
)
async def review_workflow(
    request: Request,
    workflow_id: UUID,
    payload: ReviewActionRequest,
    review_manager: Annotated[ReviewTaskManager, Depends(get_review_manager)],
) -> ApiResponse:
    """Approve, reject, correct or time out the pending review task."""
    outcome = await review_manager.apply_action(
        workflow_id,
        payload.action,
        corrected_data=payload.corrected_data,
        notes=payload.notes,
    )
    data = ReviewActionResponse(
        workflow_id=workflow_id,
        review_task_id=outcome.task.id,
        review_status=outcome.task.status,
        state=outcome.workflow.state,
    )
    return create_api_response(data=data, message=f"Review {payload.action.value} applied", request=request)


@router.get(
    "/{workflow_id}",
    response_model=ApiResponse,
    summary="Get a workflow with its contract",
    operation_id="get_workflow",
)
async def get_workflow(
    request: Request,
    workflow_id: UUID,
    state_machine: Annotated[WorkflowStateMachine, Depends(get_state_machine)],
    contract_repo: Annotated[ContractRepository, Depends(get_contract_repository)],
) -> ApiResponse:
    workflow = await state_machine.get_workflow(workflow_id)
    contract = await contract_repo.get_by_workflow_id(workflow_id)

    data = WorkflowResponse.model_validate(workflow)
    if contract is not None:
        data.contract = ContractResponse.model_validate(contract)
    return create_api_response(data=data, message="Workflow retrieved", request=request)


@router.get(
    "/{workflow_id}/history",
    response_model=ApiResponse,
    summary="Get the state transition history of a workflow",
    operation_id="get_workflow_history",
)
async def get_workflow_history(
    request: Request,
    workflow_id: UUID,
    state_machine: Annotated[WorkflowStateMachine, Depends(get_state_machine)],
) -> ApiResponse:
    logs = await state_machine.get_history(workflow_id)
    entries = [StateLogEntryResponse.model_validate(log) for log in logs]
    return create_api_response(data=entries, message="Workflow history retrieved", request=request)
