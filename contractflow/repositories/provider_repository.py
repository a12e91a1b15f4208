import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.database.models import Provider, ProviderConfig, Vertical
from contractflow.repositories.base_repository import BaseRepository


class ProviderRepository(BaseRepository[Provider]):
    """Read access to verticals, providers and provider configs."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Provider)

    async def get_vertical_by_slug(self, slug: str) -> Optional[Vertical]:
        """Get an active vertical by slug."""
        try:
            query = select(Vertical).where(Vertical.slug == slug, Vertical.active.is_(True))
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving vertical for", e) from e

    async def get_vertical_by_id(self, vertical_id: uuid.UUID) -> Optional[Vertical]:
        try:
            result = await self.session.execute(select(Vertical).where(Vertical.id == vertical_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving vertical for", e) from e

    async def get_provider_by_slug(self, slug: str, vertical_id: uuid.UUID) -> Optional[Provider]:
        """Get an active provider of a vertical by slug."""
        try:
            query = select(Provider).where(
                Provider.slug == slug,
                Provider.vertical_id == vertical_id,
                Provider.active.is_(True),
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving", e) from e

    async def get_active_config(self, provider_id: uuid.UUID) -> Optional[ProviderConfig]:
        """Get the active config of a provider, preferring the ``default`` product type."""
        try:
            query = (
                select(ProviderConfig)
                .where(ProviderConfig.provider_id == provider_id, ProviderConfig.active.is_(True))
                .order_by((ProviderConfig.product_type == "default").desc(), ProviderConfig.created_at.asc())
                .limit(1)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving config for", e) from e
