"""Workflow finite-state machine.

The allowed transitions are data (``ALLOWED_TRANSITIONS``). Every accepted
transition is written with a conditional update on the observed state plus
one audit log row in the same transaction, so a concurrent writer that got
there first turns this call into an ``InvalidStateTransitionError``.
"""

from typing import Any, Dict, FrozenSet, List, Optional
from uuid import UUID

from contractflow.core.config import settings
from contractflow.core.exceptions import (
    ConfigurationError,
    InvalidStateTransitionError,
    WorkflowNotFoundError,
)
from contractflow.database.models import Workflow, WorkflowStateLog
from contractflow.repositories.workflow_repository import WorkflowRepository
from contractflow.schemas.enums import WorkflowState
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

S = WorkflowState

ALLOWED_TRANSITIONS: Dict[WorkflowState, FrozenSet[WorkflowState]] = {
    S.PENDING: frozenset({S.PARSING_PDF}),
    S.PARSING_PDF: frozenset({S.EXTRACTING, S.FAILED}),
    S.EXTRACTING: frozenset({S.VALIDATING, S.FAILED}),
    S.VALIDATING: frozenset({S.VALIDATED, S.REVIEW_REQUIRED, S.FAILED}),
    S.REVIEW_REQUIRED: frozenset({S.VALIDATED, S.REJECTED, S.TIMED_OUT}),
    S.VALIDATED: frozenset({S.COMPARING}),
    S.COMPARING: frozenset({S.COMPLETED, S.FAILED}),
    S.FAILED: frozenset({S.PARSING_PDF, S.EXTRACTING, S.VALIDATING, S.COMPARING, S.REJECTED}),
    S.COMPLETED: frozenset(),
    S.REJECTED: frozenset(),
    S.TIMED_OUT: frozenset(),
}

_unmapped = set(WorkflowState) - set(ALLOWED_TRANSITIONS)
if _unmapped:
    raise ConfigurationError(f"Transition table is missing states: {sorted(s.value for s in _unmapped)}")

TERMINAL_STATES: FrozenSet[WorkflowState] = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def is_valid_transition(from_state: WorkflowState, to_state: WorkflowState) -> bool:
    return WorkflowState(to_state) in ALLOWED_TRANSITIONS[WorkflowState(from_state)]


def is_terminal_state(state: WorkflowState) -> bool:
    return WorkflowState(state) in TERMINAL_STATES


class WorkflowStateMachine:
    """Validates, records and escalates workflow state changes."""

    def __init__(self, workflow_repository: WorkflowRepository, max_retries: Optional[int] = None):
        """Initialize the state machine.

        Args:
            workflow_repository: Repository for workflows and their audit log
            max_retries: Failures after which a workflow is rejected
        """
        self.workflow_repo = workflow_repository
        self.max_retries = max_retries if max_retries is not None else settings.pipeline.max_retries
        self.logger = LOGGER

    async def create_workflow(
        self,
        vertical_id: UUID,
        pdf_filename: Optional[str] = None,
        provider_id: Optional[UUID] = None,
        pdf_storage_path: str = "",
    ) -> Workflow:
        """Create a workflow in ``pending``, logging the initial entry."""
        workflow = await self.workflow_repo.create_workflow(
            vertical_id=vertical_id,
            pdf_storage_path=pdf_storage_path,
            pdf_filename=pdf_filename,
            provider_id=provider_id,
        )
        self.logger.info(
            "Workflow created",
            extra={"workflow_id": str(workflow.id), "vertical_id": str(vertical_id)},
        )
        return workflow

    async def get_workflow(self, workflow_id: UUID) -> Workflow:
        workflow = await self.workflow_repo.get_by_id(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return workflow

    async def get_history(self, workflow_id: UUID) -> List[WorkflowStateLog]:
        """Return the ordered audit trail of a workflow."""
        await self.get_workflow(workflow_id)
        return await self.workflow_repo.list_state_logs(workflow_id)

    async def transition(
        self,
        workflow_id: UUID,
        to_state: WorkflowState,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Workflow:
        """Move a workflow to ``to_state``.

        Args:
            workflow_id: Workflow to move
            to_state: Target state
            metadata: Audit metadata; for ``failed`` its ``errorMessage`` is
                stored on the workflow, other transitions clear the message

        Returns:
            The updated workflow

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            InvalidStateTransitionError: If the table forbids the move or a
                concurrent writer changed the state first
        """
        to_state = WorkflowState(to_state)
        metadata = dict(metadata or {})
        workflow = await self.get_workflow(workflow_id)
        from_state = WorkflowState(workflow.state)

        if not is_valid_transition(from_state, to_state):
            self.logger.warning(
                f"Rejected transition {from_state.value} -> {to_state.value}",
                extra={"workflow_id": str(workflow_id), "error_code": InvalidStateTransitionError.code},
            )
            raise InvalidStateTransitionError(
                f"Cannot transition workflow from '{from_state.value}' to '{to_state.value}'",
                details=f"workflow_id={workflow_id}",
            )

        error_message = metadata.get("errorMessage") if to_state == WorkflowState.FAILED else None
        updated = await self.workflow_repo.transition_state(
            workflow_id,
            from_state=from_state.value,
            to_state=to_state.value,
            metadata=metadata,
            error_message=error_message,
        )
        if updated is None:
            self.logger.warning(
                f"Lost race on transition {from_state.value} -> {to_state.value}",
                extra={"workflow_id": str(workflow_id), "error_code": InvalidStateTransitionError.code},
            )
            raise InvalidStateTransitionError(
                f"Workflow state changed concurrently; expected '{from_state.value}'",
                details=f"workflow_id={workflow_id}",
            )

        self.logger.info(
            f"Workflow transitioned {from_state.value} -> {to_state.value}",
            extra={"workflow_id": str(workflow_id), "step": to_state.value},
        )
        return updated

    async def fail_workflow(
        self,
        workflow_id: UUID,
        error_code: str,
        error_message: str,
        failed_at_step: str,
    ) -> Workflow:
        """Move a workflow to ``failed`` and escalate if retries are exhausted.

        Args:
            workflow_id: Workflow that failed
            error_code: Code of the error that caused the failure
            error_message: Human readable message stored on the workflow
            failed_at_step: State the workflow was in when it failed

        Returns:
            The workflow, in ``failed`` or ``rejected``
        """
        await self.transition(
            workflow_id,
            WorkflowState.FAILED,
            {
                "errorCode": error_code,
                "errorMessage": error_message,
                "failedAtStep": failed_at_step,
            },
        )

        retry_count = await self.workflow_repo.increment_retry_count(workflow_id)
        if retry_count is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")

        self.logger.error(
            f"Workflow failed at {failed_at_step}: {error_message}",
            extra={
                "workflow_id": str(workflow_id),
                "step": failed_at_step,
                "error_code": error_code,
                "retry_count": retry_count,
            },
        )

        if retry_count >= self.max_retries:
            self.logger.warning(
                f"Max retries reached ({retry_count}), rejecting workflow",
                extra={"workflow_id": str(workflow_id)},
            )
            return await self.transition(
                workflow_id,
                WorkflowState.REJECTED,
                {"triggeredBy": "max_retries_exceeded", "retryCount": retry_count},
            )

        return await self.get_workflow(workflow_id)

    async def enter_step(self, workflow_id: UUID, step: WorkflowState) -> Workflow:
        """Make sure a workflow is in ``step`` before running it.

        A workflow already in ``step`` is returned unchanged. A failed
        workflow re-enters ``step`` with ``{"retryAttempt": retry_count}``
        recorded on the log entry.
        """
        step = WorkflowState(step)
        workflow = await self.get_workflow(workflow_id)
        current = WorkflowState(workflow.state)
        if current == step:
            return workflow
        if current == WorkflowState.FAILED:
            self.logger.info(
                f"Retrying step {step.value} (attempt after {workflow.retry_count} failures)",
                extra={"workflow_id": str(workflow_id), "step": step.value},
            )
            return await self.transition(workflow_id, step, {"retryAttempt": workflow.retry_count})
        return await self.transition(workflow_id, step)

    async def record_storage_path(self, workflow_id: UUID, pdf_storage_path: str) -> Workflow:
        workflow = await self.workflow_repo.update_storage_path(workflow_id, pdf_storage_path)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return workflow

    async def assign_provider(self, workflow_id: UUID, provider_id: UUID) -> Workflow:
        workflow = await self.workflow_repo.assign_provider(workflow_id, provider_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return workflow

    @staticmethod
    def is_terminal_state(state: WorkflowState) -> bool:
        return is_terminal_state(state)
