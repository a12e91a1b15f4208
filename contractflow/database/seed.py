"""Seed the provider registry with the built-in verticals and providers.

Run with ``python -m contractflow.database.seed``. Existing rows are left
untouched, so the script can be run repeatedly.
"""

import asyncio
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.core.database import close_database, get_async_session_context
from contractflow.database.models import Provider, ProviderConfig, Vertical
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

VERTICALS: List[Dict[str, Any]] = [
    {
        "slug": "energy",
        "display_name": "Energy",
        "default_prompt_name": "contract-extraction-energy",
        "base_required_fields": [
            "provider", "tariff_name", "monthly_rate", "contract_start",
            "contract_end", "kwh_price", "cancellation_period",
        ],
    },
    {
        "slug": "telco",
        "display_name": "Telco",
        "default_prompt_name": "contract-extraction-telco",
        "base_required_fields": [
            "provider", "plan_name", "monthly_rate", "contract_start",
            "contract_end", "data_volume", "cancellation_period",
        ],
    },
    {
        "slug": "insurance",
        "display_name": "Insurance",
        "default_prompt_name": "contract-extraction-insurance",
        "base_required_fields": [
            "provider", "policy_type", "monthly_premium", "contract_start",
            "contract_end", "coverage_amount", "deductible",
        ],
    },
]

PROVIDERS: List[Dict[str, Any]] = [
    {
        "slug": "vattenfall",
        "display_name": "Vattenfall",
        "vertical": "energy",
        "validation_rules": {"monthly_rate": {"min": 30, "max": 500}, "kwh_price": {"min": 0.1, "max": 1.0}},
    },
    {
        "slug": "eon",
        "display_name": "E.ON",
        "vertical": "energy",
        "validation_rules": {"monthly_rate": {"min": 25, "max": 600}, "kwh_price": {"min": 0.1, "max": 1.0}},
    },
    {
        "slug": "deutsche-telekom",
        "display_name": "Deutsche Telekom",
        "vertical": "telco",
        "validation_rules": {"monthly_rate": {"min": 10, "max": 200}, "data_volume": {"min": 1, "max": 999}},
    },
    {
        "slug": "allianz",
        "display_name": "Allianz",
        "vertical": "insurance",
        "required_fields": [
            "provider", "policy_type", "monthly_premium", "contract_start",
            "contract_end", "coverage_amount", "deductible", "policy_number",
        ],
        "validation_rules": {
            "monthly_premium": {"min": 10, "max": 2000},
            "coverage_amount": {"min": 1000, "max": 10000000},
        },
    },
]


async def seed_registry(session: AsyncSession) -> Dict[str, int]:
    """Insert missing verticals, providers and default provider configs.

    Returns:
        Number of rows inserted per table
    """
    inserted = {"verticals": 0, "providers": 0, "provider_configs": 0}

    for vertical in VERTICALS:
        result = await session.execute(
            insert(Vertical).values(**vertical).on_conflict_do_nothing(index_elements=["slug"])
        )
        inserted["verticals"] += result.rowcount or 0

    vertical_ids = dict((await session.execute(select(Vertical.slug, Vertical.id))).all())

    for seed in PROVIDERS:
        vertical_id = vertical_ids.get(seed["vertical"])
        if vertical_id is None:
            LOGGER.warning(f"Vertical {seed['vertical']} not found, skipping provider {seed['slug']}")
            continue

        result = await session.execute(
            insert(Provider)
            .values(slug=seed["slug"], display_name=seed["display_name"], vertical_id=vertical_id)
            .on_conflict_do_nothing(index_elements=["slug"])
        )
        inserted["providers"] += result.rowcount or 0

        provider_id = await session.scalar(select(Provider.id).where(Provider.slug == seed["slug"]))
        result = await session.execute(
            insert(ProviderConfig)
            .values(
                provider_id=provider_id,
                product_type="default",
                required_fields=seed.get("required_fields"),
                validation_rules=seed.get("validation_rules"),
            )
            .on_conflict_do_nothing(constraint="uq_provider_configs_provider_product")
        )
        inserted["provider_configs"] += result.rowcount or 0

    await session.commit()
    return inserted


async def main():
    try:
        async with get_async_session_context() as session:
            inserted = await seed_registry(session)
        LOGGER.info("Database seed complete", extra=inserted)
    finally:
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
