"""Human review tasks for low-confidence or invalid extractions."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from contractflow.core.config import settings
from contractflow.core.exceptions import (
    AppError,
    ContractNotFoundError,
    InvalidStateTransitionError,
    ReviewAlreadyResolvedError,
    ReviewNotFoundError,
)
from contractflow.database.models import ReviewTask, Workflow
from contractflow.repositories.contract_repository import ContractRepository
from contractflow.repositories.review_repository import ReviewTaskRepository
from contractflow.schemas.enums import ReviewAction, ReviewStatus, WorkflowState
from contractflow.services.workflow.state_machine import WorkflowStateMachine
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReviewOutcome:
    task: ReviewTask
    workflow: Workflow


@dataclass
class TimeoutSweepResult:
    timed_out: List[UUID] = field(default_factory=list)
    failed: List[UUID] = field(default_factory=list)


class ReviewTaskManager:
    """Creates review tasks and resolves each of them exactly once.

    Resolution order: the task must be pending and the workflow in
    ``review_required``; the workflow is moved on with a conditional
    transition and only then is the task resolved. A resolution that failed
    after the transition is finished by repeating the same action.
    """

    def __init__(
        self,
        review_repository: ReviewTaskRepository,
        contract_repository: ContractRepository,
        state_machine: WorkflowStateMachine,
        timeout_hours: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.review_repo = review_repository
        self.contract_repo = contract_repository
        self.state_machine = state_machine
        self.timeout_hours = timeout_hours if timeout_hours is not None else settings.pipeline.review_timeout_hours
        self.clock = clock
        self.logger = LOGGER

    def compute_timeout_at(self, from_time: Optional[datetime] = None) -> datetime:
        return (from_time or self.clock()) + timedelta(hours=self.timeout_hours)

    async def create_review_task(
        self,
        workflow_id: UUID,
        contract_id: UUID,
        timeout_at: Optional[datetime] = None,
    ) -> ReviewTask:
        """Create a pending review task.

        An existing pending task for the same workflow is kept; the new one is
        created anyway and a warning is logged.

        Args:
            workflow_id: Workflow under review
            contract_id: Contract to review
            timeout_at: Deadline, defaults to now plus the configured hours

        Returns:
            The created ReviewTask
        """
        existing = await self.review_repo.get_pending_for_workflow(workflow_id)
        if existing is not None:
            self.logger.warning(
                f"Workflow already has pending review task {existing.id}, creating another",
                extra={"workflow_id": str(workflow_id), "review_task_id": str(existing.id)},
            )

        task = await self.review_repo.create_review_task(
            workflow_id=workflow_id,
            contract_id=contract_id,
            timeout_at=timeout_at or self.compute_timeout_at(),
        )
        self.logger.info(
            "Review task created",
            extra={
                "workflow_id": str(workflow_id),
                "review_task_id": str(task.id),
                "timeout_at": task.timeout_at.isoformat() if task.timeout_at else None,
            },
        )
        return task

    async def ensure_review_task(self, workflow_id: UUID, contract_id: UUID) -> ReviewTask:
        """Return the pending task for this contract, creating it if there is none."""
        existing = await self.review_repo.get_pending_for_workflow(workflow_id)
        if existing is not None and existing.contract_id == contract_id:
            self.logger.info(
                "Reusing pending review task",
                extra={"workflow_id": str(workflow_id), "review_task_id": str(existing.id)},
            )
            return existing
        return await self.create_review_task(workflow_id, contract_id)

    async def get_pending_reviews(self) -> List[ReviewTask]:
        return await self.review_repo.list_pending()

    async def get_pending_review_for_workflow(self, workflow_id: UUID) -> ReviewTask:
        task = await self.review_repo.get_pending_for_workflow(workflow_id)
        if task is None:
            raise ReviewNotFoundError(f"No pending review found for workflow '{workflow_id}'")
        return task

    async def get_timed_out_reviews(self, now: Optional[datetime] = None) -> List[ReviewTask]:
        return await self.review_repo.list_timed_out(now or self.clock())

    async def approve(self, review_task_id: UUID, notes: Optional[str] = None) -> ReviewOutcome:
        return await self._resolve(
            review_task_id,
            status=ReviewStatus.APPROVED,
            target_state=WorkflowState.VALIDATED,
            triggered_by="human_review",
            reviewer_notes=notes,
        )

    async def reject(self, review_task_id: UUID, notes: Optional[str] = None) -> ReviewOutcome:
        return await self._resolve(
            review_task_id,
            status=ReviewStatus.REJECTED,
            target_state=WorkflowState.REJECTED,
            triggered_by="human_review",
            reviewer_notes=notes,
        )

    async def correct(
        self,
        review_task_id: UUID,
        corrected_data: Dict[str, Any],
        notes: Optional[str] = None,
    ) -> ReviewOutcome:
        """Replace the contract data with a reviewer's correction.

        The contract is updated first (final confidence 100). If that write
        fails the task stays pending.
        """
        return await self._resolve(
            review_task_id,
            status=ReviewStatus.CORRECTED,
            target_state=WorkflowState.VALIDATED,
            triggered_by="human_review",
            reviewer_notes=notes,
            corrected_data=corrected_data,
        )

    async def timeout(self, review_task_id: UUID) -> ReviewOutcome:
        return await self._resolve(
            review_task_id,
            status=ReviewStatus.TIMED_OUT,
            target_state=WorkflowState.TIMED_OUT,
            triggered_by="review_timeout",
        )

    async def apply_action(
        self,
        workflow_id: UUID,
        action: ReviewAction,
        corrected_data: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> ReviewOutcome:
        """Apply a review action to the pending task of a workflow."""
        await self.state_machine.get_workflow(workflow_id)
        task = await self.get_pending_review_for_workflow(workflow_id)

        action = ReviewAction(action)
        self.logger.info(
            f"Processing review action {action.value}",
            extra={"workflow_id": str(workflow_id), "review_task_id": str(task.id)},
        )

        if action == ReviewAction.APPROVE:
            return await self.approve(task.id, notes)
        if action == ReviewAction.REJECT:
            return await self.reject(task.id, notes)
        if action == ReviewAction.CORRECT:
            return await self.correct(task.id, corrected_data or {}, notes)
        return await self.timeout(task.id)

    async def timeout_expired_reviews(self, now: Optional[datetime] = None) -> TimeoutSweepResult:
        """Time out every pending task past its deadline.

        A task that cannot be timed out is logged and skipped.
        """
        result = TimeoutSweepResult()
        for task in await self.get_timed_out_reviews(now):
            try:
                await self.timeout(task.id)
                result.timed_out.append(task.id)
            except AppError as e:
                self.logger.error(
                    f"Failed to time out review task {task.id}: {e.message}",
                    extra={
                        "workflow_id": str(task.workflow_id),
                        "review_task_id": str(task.id),
                        "error_code": e.code,
                        "retryable": e.retryable,
                    },
                )
                result.failed.append(task.id)

        self.logger.info(
            "Review timeout sweep complete",
            extra={"timed_out": len(result.timed_out), "failed": len(result.failed)},
        )
        return result

    def _require_review_state(self, workflow: Workflow) -> None:
        if workflow.state != WorkflowState.REVIEW_REQUIRED.value:
            raise InvalidStateTransitionError(
                f"Workflow is in state '{workflow.state}', not 'review_required'",
                details=f"workflow_id={workflow.id}",
            )

    async def _resolve(
        self,
        review_task_id: UUID,
        status: ReviewStatus,
        target_state: WorkflowState,
        triggered_by: str,
        reviewer_notes: Optional[str] = None,
        corrected_data: Optional[Dict[str, Any]] = None,
    ) -> ReviewOutcome:
        task = await self.review_repo.get_by_id(review_task_id)
        if task is None:
            raise ReviewNotFoundError(f"Review task '{review_task_id}' not found")
        if task.status != ReviewStatus.PENDING.value:
            raise ReviewAlreadyResolvedError(
                f"Review task '{review_task_id}' already resolved with status '{task.status}'"
            )

        workflow = await self.state_machine.get_workflow(task.workflow_id)
        if await self._already_moved_by(task, target_state, workflow):
            self.logger.info(
                "Workflow already moved for this review, finishing task resolution",
                extra={"workflow_id": str(task.workflow_id), "review_task_id": str(review_task_id)},
            )
        else:
            self._require_review_state(workflow)

            if status == ReviewStatus.CORRECTED:
                contract = await self.contract_repo.update_extracted_data(
                    task.contract_id, corrected_data or {}, final_confidence=100
                )
                if contract is None:
                    raise ContractNotFoundError(f"Contract '{task.contract_id}' not found")

            workflow = await self.state_machine.transition(
                task.workflow_id,
                target_state,
                {"triggeredBy": triggered_by, "reviewTaskId": str(review_task_id)},
            )

        resolved = await self.review_repo.resolve_task(
            review_task_id,
            status=status.value,
            corrected_data=corrected_data,
            reviewer_notes=reviewer_notes,
        )
        if resolved is None:
            raise ReviewAlreadyResolvedError(f"Review task '{review_task_id}' was resolved concurrently")

        self.logger.info(
            f"Review task {status.value}",
            extra={"workflow_id": str(task.workflow_id), "review_task_id": str(review_task_id)},
        )
        return ReviewOutcome(task=resolved, workflow=workflow)

    async def _already_moved_by(self, task: ReviewTask, target_state: WorkflowState, workflow: Workflow) -> bool:
        """True when an earlier attempt moved the workflow for this task but never resolved it."""
        if workflow.state != target_state.value:
            return False
        history = await self.state_machine.get_history(task.workflow_id)
        return any(
            log.to_state == target_state.value
            and (log.transition_metadata or {}).get("reviewTaskId") == str(task.id)
            for log in history
        )
