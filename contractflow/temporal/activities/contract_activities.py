"""Temporal activities wrapping the contract pipeline steps.

Each activity opens its own session and rebuilds the pipeline around it.
Application errors are re-raised as ``ApplicationError`` so Temporal only
retries the ones marked retryable.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional
from uuid import UUID

from temporalio import activity
from temporalio.exceptions import ApplicationError

from contractflow.api.dependencies import build_contract_pipeline, build_langfuse_client, build_prompt_cache
from contractflow.core.database import get_async_session_context
from contractflow.core.exceptions import AppError
from contractflow.core.langfuse_client import LangfuseClient
from contractflow.services.extraction.orchestrator import ExtractionResult
from contractflow.services.extraction.prompt_cache import PromptCache
from contractflow.temporal.constants import (
    COMPARE_TARIFFS_ACTIVITY,
    EXTRACT_DATA_ACTIVITY,
    PARSE_PDF_ACTIVITY,
    VALIDATE_DATA_ACTIVITY,
)
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

_langfuse_client: Optional[LangfuseClient] = None
_prompt_cache: Optional[PromptCache] = None


def _shared_clients() -> tuple[PromptCache, LangfuseClient]:
    """Prompt cache and Langfuse client shared by every activity in the worker process."""
    global _langfuse_client, _prompt_cache
    if _langfuse_client is None:
        _langfuse_client = build_langfuse_client()
    if _prompt_cache is None:
        _prompt_cache = build_prompt_cache(_langfuse_client)
    return _prompt_cache, _langfuse_client


def to_application_error(error: AppError) -> ApplicationError:
    return ApplicationError(
        error.message,
        error.to_dict(),
        type=error.code,
        non_retryable=not error.retryable,
    )


@activity.defn(name=PARSE_PDF_ACTIVITY)
async def parse_pdf_activity(workflow_id: str) -> Dict[str, Any]:
    """Read the stored PDF and extract its text."""
    prompt_cache, langfuse_client = _shared_clients()
    try:
        async with get_async_session_context() as session:
            pipeline = build_contract_pipeline(session, prompt_cache, langfuse_client)
            text = await pipeline.parse_document(UUID(workflow_id))
            return {"pdf_text": text, "char_count": len(text)}
    except AppError as e:
        LOGGER.error(f"PDF parsing failed for workflow {workflow_id}: {e.message}", extra={"error_code": e.code})
        raise to_application_error(e) from e


@activity.defn(name=EXTRACT_DATA_ACTIVITY)
async def extract_data_activity(workflow_id: str, pdf_text: str) -> Dict[str, Any]:
    prompt_cache, langfuse_client = _shared_clients()
    try:
        async with get_async_session_context() as session:
            pipeline = build_contract_pipeline(session, prompt_cache, langfuse_client)
            result = await pipeline.extract(UUID(workflow_id), pdf_text)
            return asdict(result)
    except AppError as e:
        LOGGER.error(f"Extraction failed for workflow {workflow_id}: {e.message}", extra={"error_code": e.code})
        raise to_application_error(e) from e


@activity.defn(name=VALIDATE_DATA_ACTIVITY)
async def validate_data_activity(workflow_id: str, extraction: Dict[str, Any]) -> Dict[str, Any]:
    """Score the extraction and route the workflow to review or onward."""
    prompt_cache, langfuse_client = _shared_clients()
    try:
        async with get_async_session_context() as session:
            pipeline = build_contract_pipeline(session, prompt_cache, langfuse_client)
            outcome = await pipeline.validate(UUID(workflow_id), ExtractionResult(**extraction))
            return {
                "state": outcome.workflow.state,
                "contract_id": str(outcome.contract.id),
                "final_confidence": outcome.validation.final_confidence,
                "needs_review": outcome.validation.needs_review,
                "validation_errors": [asdict(issue) for issue in outcome.validation.validation_errors],
                "review_task_id": str(outcome.review_task.id) if outcome.review_task else None,
            }
    except AppError as e:
        LOGGER.error(f"Validation failed for workflow {workflow_id}: {e.message}", extra={"error_code": e.code})
        raise to_application_error(e) from e


@activity.defn(name=COMPARE_TARIFFS_ACTIVITY)
async def compare_tariffs_activity(workflow_id: str) -> Dict[str, Any]:
    prompt_cache, langfuse_client = _shared_clients()
    try:
        async with get_async_session_context() as session:
            pipeline = build_contract_pipeline(session, prompt_cache, langfuse_client)
            outcome = await pipeline.compare(UUID(workflow_id))
            return {"state": outcome.workflow.state, "comparison": outcome.comparison}
    except AppError as e:
        LOGGER.error(f"Comparison failed for workflow {workflow_id}: {e.message}", extra={"error_code": e.code})
        raise to_application_error(e) from e


CONTRACT_ACTIVITIES = [
    parse_pdf_activity,
    extract_data_activity,
    validate_data_activity,
    compare_tariffs_activity,
]
