"""Resolves the extraction/validation config for a vertical and optional provider."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from contractflow.core.exceptions import ProviderNotFoundError, VerticalNotFoundError
from contractflow.database.models import Provider, Vertical
from contractflow.repositories.provider_repository import ProviderRepository
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class MergedConfig:
    prompt_name: str
    required_fields: List[str] = field(default_factory=list)
    validation_rules: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class ProviderConfigResolver:
    """Merges vertical defaults with the active provider config.

    Each override (prompt name, required fields, validation rules) applies
    independently; a NULL column keeps the vertical default.
    """

    def __init__(self, provider_repository: ProviderRepository):
        self.provider_repo = provider_repository

    async def get_vertical(self, slug: str) -> Vertical:
        """Get an active vertical by slug.

        Raises:
            VerticalNotFoundError: If no active vertical has that slug
        """
        vertical = await self.provider_repo.get_vertical_by_slug(slug)
        if vertical is None:
            LOGGER.warning(f"Vertical not found: {slug}")
            raise VerticalNotFoundError(f"Vertical '{slug}' not found")
        return vertical

    async def get_vertical_by_id(self, vertical_id: UUID) -> Vertical:
        vertical = await self.provider_repo.get_vertical_by_id(vertical_id)
        if vertical is None:
            raise VerticalNotFoundError(f"Vertical with id '{vertical_id}' not found")
        return vertical

    async def find_provider(self, slug: str, vertical_id: UUID) -> Optional[Provider]:
        """Look up an active provider of a vertical, None if there is none."""
        provider = await self.provider_repo.get_provider_by_slug(slug, vertical_id)
        if provider is None:
            LOGGER.debug(f"Provider {slug} not found in vertical {vertical_id}")
        return provider

    async def get_provider(self, provider_id: UUID) -> Provider:
        provider = await self.provider_repo.get_by_id(provider_id)
        if provider is None:
            raise ProviderNotFoundError(f"Provider '{provider_id}' not found")
        return provider

    async def get_merged_config(
        self,
        vertical_id: UUID,
        provider_id: Optional[UUID] = None,
    ) -> MergedConfig:
        """Build the effective config.

        Args:
            vertical_id: Vertical whose defaults apply
            provider_id: Provider whose active config overrides them

        Returns:
            MergedConfig

        Raises:
            VerticalNotFoundError: If the vertical does not exist
        """
        vertical = await self.get_vertical_by_id(vertical_id)

        base = MergedConfig(
            prompt_name=vertical.default_prompt_name,
            required_fields=list(vertical.base_required_fields or []),
            validation_rules={},
        )

        if provider_id is None:
            LOGGER.debug(f"No provider specified, using defaults of vertical {vertical.slug}")
            return base

        config = await self.provider_repo.get_active_config(provider_id)
        if config is None:
            LOGGER.debug(f"No active config for provider {provider_id}, using vertical defaults")
            return base

        return MergedConfig(
            prompt_name=config.langfuse_prompt_name if config.langfuse_prompt_name is not None else base.prompt_name,
            required_fields=list(config.required_fields) if config.required_fields is not None else base.required_fields,
            validation_rules=dict(config.validation_rules) if config.validation_rules is not None else {},
        )
