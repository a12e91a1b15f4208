import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.database.models import ReviewTask
from contractflow.repositories.base_repository import BaseRepository


class ReviewTaskRepository(BaseRepository[ReviewTask]):
    """Repository for human review tasks."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ReviewTask)

    async def create_review_task(
        self,
        workflow_id: uuid.UUID,
        contract_id: uuid.UUID,
        timeout_at: Optional[datetime],
    ) -> ReviewTask:
        now = datetime.now(timezone.utc)
        return await self.create(
            id=uuid.uuid4(),
            workflow_id=workflow_id,
            contract_id=contract_id,
            status="pending",
            timeout_at=timeout_at,
            created_at=now,
            updated_at=now,
        )

    async def list_pending(self) -> List[ReviewTask]:
        """List pending tasks, oldest first."""
        try:
            query = (
                select(ReviewTask)
                .where(ReviewTask.status == "pending")
                .order_by(ReviewTask.created_at.asc())
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._database_error("listing pending", e) from e

    async def get_pending_for_workflow(self, workflow_id: uuid.UUID) -> Optional[ReviewTask]:
        """Get the oldest pending task of a workflow."""
        try:
            query = (
                select(ReviewTask)
                .where(ReviewTask.workflow_id == workflow_id, ReviewTask.status == "pending")
                .order_by(ReviewTask.created_at.asc())
                .limit(1)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving pending", e) from e

    async def list_timed_out(self, now: datetime) -> List[ReviewTask]:
        """List pending tasks whose ``timeout_at`` is earlier than ``now``."""
        try:
            query = (
                select(ReviewTask)
                .where(
                    ReviewTask.status == "pending",
                    ReviewTask.timeout_at.is_not(None),
                    ReviewTask.timeout_at < now,
                )
                .order_by(ReviewTask.timeout_at.asc())
            )
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._database_error("listing timed out", e) from e

    async def resolve_task(
        self,
        review_task_id: uuid.UUID,
        status: str,
        corrected_data: Optional[Dict[str, Any]] = None,
        reviewer_notes: Optional[str] = None,
    ) -> Optional[ReviewTask]:
        """Set the terminal status of a task that is still pending.

        Returns:
            The resolved task, or None if it was no longer pending
        """
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {"status": status, "reviewed_at": now, "updated_at": now}
        if corrected_data is not None:
            values["corrected_data"] = corrected_data
        if reviewer_notes is not None:
            values["reviewer_notes"] = reviewer_notes

        try:
            stmt = (
                update(ReviewTask)
                .where(ReviewTask.id == review_task_id, ReviewTask.status == "pending")
                .values(**values)
                .returning(ReviewTask)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            task = result.scalar_one_or_none()
            if task is None:
                await self.session.rollback()
                return None
            await self.session.commit()
            return task
        except SQLAlchemyError as e:
            raise await self._database_error("resolving", e) from e
