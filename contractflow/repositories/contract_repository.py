import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contractflow.database.models import Contract
from contractflow.repositories.base_repository import BaseRepository

_TWO_PLACES = Decimal("0.01")


def to_confidence_decimal(value: float) -> Decimal:
    """Round a confidence score to the two decimals stored in NUMERIC(5,2)."""
    return Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


class ContractRepository(BaseRepository[Contract]):
    """Repository for extracted contract data."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Contract)

    async def create_contract(
        self,
        workflow_id: uuid.UUID,
        vertical_id: uuid.UUID,
        extracted_data: Dict[str, Any],
        llm_confidence: float,
        final_confidence: float,
        provider_id: Optional[uuid.UUID] = None,
    ) -> Contract:
        """Persist the extraction of a workflow.

        Args:
            workflow_id: Owning workflow
            vertical_id: Vertical of the workflow
            extracted_data: Key/value data returned by the model
            llm_confidence: Confidence reported by the model
            final_confidence: Score after validation penalties
            provider_id: Detected or assigned provider

        Returns:
            Created Contract instance
        """
        now = datetime.now(timezone.utc)
        return await self.create(
            id=uuid.uuid4(),
            workflow_id=workflow_id,
            vertical_id=vertical_id,
            provider_id=provider_id,
            extracted_data=extracted_data,
            llm_confidence=to_confidence_decimal(llm_confidence),
            final_confidence=to_confidence_decimal(final_confidence),
            created_at=now,
            updated_at=now,
        )

    async def get_by_workflow_id(self, workflow_id: uuid.UUID) -> Optional[Contract]:
        """Get the most recent contract of a workflow."""
        try:
            query = (
                select(Contract)
                .where(Contract.workflow_id == workflow_id)
                .order_by(Contract.created_at.desc())
                .limit(1)
            )
            result = await self.session.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._database_error("retrieving", e) from e

    async def update_extracted_data(
        self,
        contract_id: uuid.UUID,
        extracted_data: Dict[str, Any],
        final_confidence: float = 100,
    ) -> Optional[Contract]:
        """Replace extracted data after a human correction."""
        return await self.update(
            contract_id,
            extracted_data=extracted_data,
            final_confidence=to_confidence_decimal(final_confidence),
        )

    async def update_validation(
        self,
        contract_id: uuid.UUID,
        extracted_data: Dict[str, Any],
        llm_confidence: float,
        final_confidence: float,
        provider_id: Optional[uuid.UUID] = None,
    ) -> Optional[Contract]:
        """Overwrite a contract with the result of a repeated validation."""
        return await self.update(
            contract_id,
            provider_id=provider_id,
            extracted_data=extracted_data,
            llm_confidence=to_confidence_decimal(llm_confidence),
            final_confidence=to_confidence_decimal(final_confidence),
        )
