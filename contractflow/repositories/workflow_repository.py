import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.database.models import Workflow, WorkflowStateLog
from contractflow.repositories.base_repository import BaseRepository


class WorkflowRepository(BaseRepository[Workflow]):
    """Repository for workflow rows and their append-only state log."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Workflow)

    async def get_by_id(self, id: uuid.UUID) -> Optional[Workflow]:
        """Get a workflow by ID, refreshing any copy already in the session.

        Retry counts and states are changed with bulk UPDATE statements, so
        the identity map copy may be stale.
        """
        try:
            query = (
                select(Workflow)
                .where(Workflow.id == id)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving", e) from e

    async def create_workflow(
        self,
        vertical_id: uuid.UUID,
        pdf_storage_path: str = "",
        pdf_filename: Optional[str] = None,
        provider_id: Optional[uuid.UUID] = None,
    ) -> Workflow:
        """Create a workflow in state ``pending`` with its initial log entry.

        Both rows are written in one transaction.

        Args:
            vertical_id: Vertical the document belongs to
            pdf_storage_path: Path of the stored PDF, empty until stored
            pdf_filename: Original upload filename
            provider_id: Provider, when known up front

        Returns:
            Created Workflow instance
        """
        now = datetime.now(timezone.utc)
        try:
            workflow = Workflow(
                id=uuid.uuid4(),
                vertical_id=vertical_id,
                provider_id=provider_id,
                pdf_storage_path=pdf_storage_path,
                pdf_filename=pdf_filename,
                state="pending",
                retry_count=0,
                created_at=now,
                updated_at=now,
            )
            self.session.add(workflow)
            self.session.add(
                WorkflowStateLog(
                    workflow_id=workflow.id,
                    from_state=None,
                    to_state="pending",
                    transition_metadata={},
                    created_at=now,
                )
            )
            await self.session.flush()
            await self.session.commit()
            return workflow
        except SQLAlchemyError as e:
            raise await self._database_error("creating", e) from e

    async def transition_state(
        self,
        workflow_id: uuid.UUID,
        from_state: str,
        to_state: str,
        metadata: Dict[str, Any],
        error_message: Optional[str] = None,
    ) -> Optional[Workflow]:
        """Move a workflow from ``from_state`` to ``to_state`` and log it.

        The update only matches while the row is still in ``from_state``.
        When no row matches nothing is written and None is returned.

        Args:
            workflow_id: Workflow record ID
            from_state: State the caller observed
            to_state: Target state
            metadata: Audit metadata stored on the log entry
            error_message: Stored error message, None clears it

        Returns:
            The updated workflow, or None if a concurrent writer won
        """
        now = datetime.now(timezone.utc)
        try:
            stmt = (
                update(Workflow)
                .where(Workflow.id == workflow_id, Workflow.state == from_state)
                .values(state=to_state, error_message=error_message, updated_at=now)
                .returning(Workflow)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            workflow = result.scalar_one_or_none()
            if workflow is None:
                await self.session.rollback()
                return None

            self.session.add(
                WorkflowStateLog(
                    workflow_id=workflow_id,
                    from_state=from_state,
                    to_state=to_state,
                    transition_metadata=metadata,
                    created_at=now,
                )
            )
            await self.session.flush()
            await self.session.commit()
            return workflow
        except SQLAlchemyError as e:
            raise await self._database_error("transitioning", e) from e

    async def increment_retry_count(self, workflow_id: uuid.UUID) -> Optional[int]:
        """Atomically add one to ``retry_count``.

        Returns:
            The post-increment count, or None if the workflow does not exist
        """
        try:
            stmt = (
                update(Workflow)
                .where(Workflow.id == workflow_id)
                .values(
                    retry_count=Workflow.retry_count + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(Workflow.retry_count)
            )
            result = await self.session.execute(stmt)
            retry_count = result.scalar_one_or_none()
            await self.session.commit()
            return retry_count
        except SQLAlchemyError as e:
            raise await self._database_error("incrementing retries of", e) from e

    async def list_state_logs(self, workflow_id: uuid.UUID) -> List[WorkflowStateLog]:
        """Return the audit trail of a workflow in acceptance order."""
        try:
            query = (
                select(WorkflowStateLog)
                .where(WorkflowStateLog.workflow_id == workflow_id)
                .order_by(WorkflowStateLog.created_at.asc(), WorkflowStateLog.id.asc())
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._database_error("listing state logs of", e) from e

    async def update_storage_path(
        self, workflow_id: uuid.UUID, pdf_storage_path: str
    ) -> Optional[Workflow]:
        return await self.update(workflow_id, pdf_storage_path=pdf_storage_path)

    async def assign_provider(
        self, workflow_id: uuid.UUID, provider_id: uuid.UUID
    ) -> Optional[Workflow]:
        return await self.update(workflow_id, provider_id=provider_id)
