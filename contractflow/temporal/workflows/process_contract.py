"""Temporal workflow driving one contract through the pipeline."""

from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from contractflow.temporal.constants import (
        ACTIVITY_MAXIMUM_ATTEMPTS,
        COMPARE_TARIFFS_ACTIVITY,
        DEFAULT_ACTIVITY_TIMEOUT_SECONDS,
        EXTRACT_DATA_ACTIVITY,
        PARSE_PDF_ACTIVITY,
        PROCESS_CONTRACT_WORKFLOW,
        VALIDATE_DATA_ACTIVITY,
    )


ACTIVITY_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=2),
    backoff_coefficient=2.0,
    maximum_attempts=ACTIVITY_MAXIMUM_ATTEMPTS,
)


@workflow.defn(name=PROCESS_CONTRACT_WORKFLOW)
class ProcessContractWorkflow:
    """Parse, extract, validate, then compare unless human review is required.

    When review is required the run ends in ``review_required``; the review
    API (or the timeout sweep) moves the workflow on from there.
    """

    def __init__(self):
        self._status = "initialized"
        self._current_step: str | None = None

    @workflow.query
    def get_status(self) -> dict:
        """Query handler for the current step."""
        return {"status": self._status, "current_step": self._current_step}

    async def _run_activity(self, name: str, args: list) -> Any:
        self._current_step = name
        return await workflow.execute_activity(
            name,
            args=args,
            start_to_close_timeout=timedelta(seconds=DEFAULT_ACTIVITY_TIMEOUT_SECONDS),
            retry_policy=ACTIVITY_RETRY_POLICY,
        )

    @workflow.run
    async def run(self, payload: Dict[str, Any]) -> dict:
        """Execute the contract workflow.

        Args:
            payload: ``{"workflow_id": str}``

        Returns:
            Final state plus the step results
        """
        workflow_id = payload["workflow_id"]
        self._status = "running"

        parsed = await self._run_activity(PARSE_PDF_ACTIVITY, [workflow_id])
        extraction = await self._run_activity(EXTRACT_DATA_ACTIVITY, [workflow_id, parsed["pdf_text"]])
        validation = await self._run_activity(VALIDATE_DATA_ACTIVITY, [workflow_id, extraction])

        if validation["needs_review"]:
            self._status = "awaiting_review"
            return {"workflow_id": workflow_id, "state": validation["state"], "validation": validation}

        comparison = await self._run_activity(COMPARE_TARIFFS_ACTIVITY, [workflow_id])

        self._status = "completed"
        self._current_step = None
        return {
            "workflow_id": workflow_id,
            "state": comparison["state"],
            "validation": validation,
            "comparison": comparison["comparison"],
        }
