from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.core.exceptions import DatabaseConnectionError
from contractflow.utils.logging import get_logger

# Define a generic type for SQLAlchemy models
ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Base repository implementing common CRUD operations.

    Any ``SQLAlchemyError`` is logged, the session rolled back, and the error
    re-raised as a retryable ``DatabaseConnectionError``.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        """Initialize the repository.

        Args:
            session: SQLAlchemy async session
            model: The SQLAlchemy model class this repository manages
        """
        self.session = session
        self.model = model
        self.logger = LOGGER

    async def _database_error(self, action: str, error: SQLAlchemyError) -> DatabaseConnectionError:
        self.logger.error(
            f"Error {action} {self.model.__name__}: {str(error)}",
            exc_info=True,
            extra={"error_code": DatabaseConnectionError.code, "retryable": True},
        )
        await self.session.rollback()
        return DatabaseConnectionError(
            f"Database error while {action} {self.model.__name__}",
            details=str(error),
            original_error=error,
        )

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        """Get a record by its ID.

        Args:
            id: The UUID of the record

        Returns:
            The record if found, None otherwise
        """
        try:
            query = select(self.model).where(self.model.id == id)
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving", e) from e

    async def get_all(
        self,
        skip: int = 0,
        limit: int = 200,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[ModelType]:
        """Get all records with optional pagination and filtering.

        Args:
            skip: Number of records to skip
            limit: Maximum number of records to return
            filters: Dictionary of field_name: value to filter by

        Returns:
            List of records
        """
        try:
            query = select(self.model)

            if filters:
                for field, value in filters.items():
                    if hasattr(self.model, field):
                        query = query.where(getattr(self.model, field) == value)

            query = query.offset(skip).limit(limit)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._database_error("listing", e) from e

    async def create(self, **kwargs) -> ModelType:
        """Create a new record and commit it.

        Args:
            **kwargs: Fields and values for the new record

        Returns:
            The created record
        """
        try:
            instance = self.model(**kwargs)
            self.session.add(instance)
            await self.session.flush()
            await self.session.commit()
            return instance
        except SQLAlchemyError as e:
            raise await self._database_error("creating", e) from e

    async def update(self, id: UUID, **kwargs) -> Optional[ModelType]:
        """Update an existing record.

        Args:
            id: The UUID of the record to update
            **kwargs: Fields and values to update

        Returns:
            The updated record if found, None otherwise
        """
        instance = await self.get_by_id(id)
        if not instance:
            return None

        try:
            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)

            if hasattr(instance, "updated_at"):
                setattr(instance, "updated_at", datetime.now(timezone.utc))

            await self.session.flush()
            await self.session.commit()
            return instance
        except SQLAlchemyError as e:
            raise await self._database_error("updating", e) from e

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records matching filters."""
        try:
            query = select(func.count()).select_from(self.model)

            if filters:
                for field, value in filters.items():
                    if hasattr(self.model, field):
                        query = query.where(getattr(self.model, field) == value)

            result = await self.session.execute(query)
            return result.scalar_one()
        except SQLAlchemyError as e:
            raise await self._database_error("counting", e) from e
