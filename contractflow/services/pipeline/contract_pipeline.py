"""Step runner moving a contract document through the workflow.

Each step puts the workflow into its own state first (re-entering it from
``failed`` on a retry), does its work, then transitions onward. Any error
raised inside a step is recorded with ``fail_workflow`` before it is
re-raised, except state conflicts and missing workflows, which say nothing
about the step itself.
"""

import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from uuid import UUID

from contractflow.core.config import settings
from contractflow.core.exceptions import (
    AppError,
    ContractNotFoundError,
    InvalidStateTransitionError,
    ProviderNotFoundError,
    WorkflowNotFoundError,
)
from contractflow.database.models import Contract, ReviewTask, Workflow
from contractflow.repositories.contract_repository import ContractRepository
from contractflow.schemas.enums import WorkflowState
from contractflow.services.extraction.orchestrator import ExtractionOrchestrator, ExtractionResult
from contractflow.services.pipeline.pdf_parser import DocumentTextParser
from contractflow.services.pipeline.pdf_storage import PdfStorage
from contractflow.services.pipeline.tariff_comparison import TariffComparator
from contractflow.services.provider_registry.config_resolver import ProviderConfigResolver
from contractflow.services.review.review_task_manager import ReviewTaskManager
from contractflow.services.validation.confidence_scorer import ValidationResult, validate_and_score
from contractflow.services.workflow.state_machine import WorkflowStateMachine
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


def provider_slug_from(extracted_data: Dict[str, Any]) -> Optional[str]:
    """Derive a provider slug from the extracted ``provider`` name."""
    provider = extracted_data.get("provider")
    if not isinstance(provider, str) or not provider.strip():
        return None
    return re.sub(r"\s+", "-", provider.strip().lower())


@dataclass
class ValidationOutcome:
    workflow: Workflow
    contract: Contract
    validation: ValidationResult
    review_task: Optional[ReviewTask] = None


@dataclass
class ComparisonOutcome:
    workflow: Workflow
    comparison: Dict[str, Any]


class ContractPipeline:
    """Runs the ingest, parse, extract, validate and compare steps."""

    def __init__(
        self,
        state_machine: WorkflowStateMachine,
        config_resolver: ProviderConfigResolver,
        extraction: ExtractionOrchestrator,
        review_manager: ReviewTaskManager,
        contract_repository: ContractRepository,
        pdf_parser: DocumentTextParser,
        pdf_storage: PdfStorage,
        comparator: Optional[TariffComparator] = None,
        confidence_threshold: Optional[float] = None,
    ):
        self.state_machine = state_machine
        self.config_resolver = config_resolver
        self.extraction = extraction
        self.review_manager = review_manager
        self.contract_repo = contract_repository
        self.pdf_parser = pdf_parser
        self.pdf_storage = pdf_storage
        self.comparator = comparator or TariffComparator()
        self.confidence_threshold = (
            confidence_threshold if confidence_threshold is not None else settings.pipeline.confidence_threshold
        )
        self.logger = LOGGER

    async def ingest(
        self,
        pdf_bytes: bytes,
        vertical_slug: str,
        filename: Optional[str] = None,
        provider_slug: Optional[str] = None,
    ) -> Workflow:
        """Create a workflow for an uploaded PDF and store the file.

        Args:
            pdf_bytes: PDF file content
            vertical_slug: Vertical the contract belongs to
            filename: Original upload filename
            provider_slug: Provider, when the caller knows it

        Returns:
            The new workflow, in ``pending`` with its storage path recorded
        """
        vertical = await self.config_resolver.get_vertical(vertical_slug)

        provider_id: Optional[UUID] = None
        if provider_slug:
            provider = await self.config_resolver.find_provider(provider_slug, vertical.id)
            if provider is None:
                raise ProviderNotFoundError(f"Provider '{provider_slug}' not found in vertical '{vertical_slug}'")
            provider_id = provider.id

        workflow = await self.state_machine.create_workflow(
            vertical_id=vertical.id,
            pdf_filename=filename,
            provider_id=provider_id,
        )
        stored = await self.pdf_storage.store(pdf_bytes, workflow.id, filename)
        workflow = await self.state_machine.record_storage_path(workflow.id, stored.path)

        self.logger.info(
            "Contract workflow created",
            extra={"workflow_id": str(workflow.id), "storage_path": stored.path, "size_bytes": stored.size_bytes},
        )
        return workflow

    async def parse_document(self, workflow_id: UUID, pdf_bytes: Optional[bytes] = None) -> str:
        """Extract the document text and move the workflow to ``extracting``.

        When ``pdf_bytes`` is omitted the stored file is read back.
        """

        async def step() -> str:
            workflow = await self.state_machine.enter_step(workflow_id, WorkflowState.PARSING_PDF)
            content = pdf_bytes
            if content is None:
                content = await self.pdf_storage.read(workflow.pdf_storage_path, workflow_id)
            text = await self.pdf_parser.parse_text(content, workflow_id)
            await self.state_machine.transition(workflow_id, WorkflowState.EXTRACTING)
            return text

        return await self._run_step(workflow_id, WorkflowState.PARSING_PDF, step)

    async def extract(self, workflow_id: UUID, document_text: str) -> ExtractionResult:
        """Run model extraction and move the workflow to ``validating``."""

        async def step() -> ExtractionResult:
            workflow = await self.state_machine.enter_step(workflow_id, WorkflowState.EXTRACTING)
            vertical = await self.config_resolver.get_vertical_by_id(workflow.vertical_id)
            config = await self.config_resolver.get_merged_config(workflow.vertical_id, workflow.provider_id)

            provider_hint = None
            if workflow.provider_id is not None:
                provider_hint = (await self.config_resolver.get_provider(workflow.provider_id)).slug

            result = await self.extraction.extract(
                document_text,
                vertical.slug,
                config,
                workflow_id=workflow_id,
                provider_hint=provider_hint,
            )
            await self.state_machine.transition(workflow_id, WorkflowState.VALIDATING)
            return result

        return await self._run_step(workflow_id, WorkflowState.EXTRACTING, step)

    async def validate(self, workflow_id: UUID, extraction: ExtractionResult) -> ValidationOutcome:
        """Score the extraction, store the contract and route it.

        Low confidence or validation errors create a review task and move the
        workflow to ``review_required``; otherwise it becomes ``validated``.
        Running it again after a failure updates the same contract and keeps
        at most one pending review task.
        """

        async def step() -> ValidationOutcome:
            workflow = await self.state_machine.enter_step(workflow_id, WorkflowState.VALIDATING)
            provider_id = await self._detect_provider(workflow, extraction.extracted_data)
            config = await self.config_resolver.get_merged_config(workflow.vertical_id, provider_id)

            validation = validate_and_score(
                extraction.extracted_data,
                extraction.llm_confidence,
                config.required_fields,
                config.validation_rules,
                threshold=self.confidence_threshold,
            )
            self.logger.info(
                "Validation completed, review required" if validation.needs_review else "Validation completed, passed",
                extra={
                    "workflow_id": str(workflow_id),
                    "step": "validating",
                    "final_confidence": validation.final_confidence,
                    "error_count": len(validation.validation_errors),
                },
            )

            contract = await self._store_contract(workflow, provider_id, extraction, validation)

            if validation.needs_review:
                # A retried validation reuses the task left pending by the failed attempt
                review_task = await self.review_manager.ensure_review_task(workflow_id, contract.id)
                workflow = await self.state_machine.transition(workflow_id, WorkflowState.REVIEW_REQUIRED)
                return ValidationOutcome(workflow, contract, validation, review_task)

            workflow = await self.state_machine.transition(workflow_id, WorkflowState.VALIDATED)
            return ValidationOutcome(workflow, contract, validation)

        return await self._run_step(workflow_id, WorkflowState.VALIDATING, step)

    async def extract_and_validate(self, workflow_id: UUID, document_text: str) -> ValidationOutcome:
        extraction = await self.extract(workflow_id, document_text)
        return await self.validate(workflow_id, extraction)

    async def compare(self, workflow_id: UUID) -> ComparisonOutcome:
        """Compare tariffs for the workflow's contract and complete the workflow."""

        async def step() -> ComparisonOutcome:
            await self.state_machine.enter_step(workflow_id, WorkflowState.COMPARING)
            contract = await self.contract_repo.get_by_workflow_id(workflow_id)
            if contract is None:
                raise ContractNotFoundError(f"No contract found for workflow '{workflow_id}'")

            comparison = self.comparator.compare(contract.extracted_data)
            workflow = await self.state_machine.transition(workflow_id, WorkflowState.COMPLETED)
            self.logger.info("Workflow completed", extra={"workflow_id": str(workflow_id), "step": "completed"})
            return ComparisonOutcome(workflow=workflow, comparison=comparison)

        return await self._run_step(workflow_id, WorkflowState.COMPARING, step)

    async def _detect_provider(self, workflow: Workflow, extracted_data: Dict[str, Any]) -> Optional[UUID]:
        if workflow.provider_id is not None:
            return workflow.provider_id

        slug = provider_slug_from(extracted_data)
        if slug is None:
            return None

        provider = await self.config_resolver.find_provider(slug, workflow.vertical_id)
        if provider is None:
            return None

        await self.state_machine.assign_provider(workflow.id, provider.id)
        self.logger.info(
            f"Detected provider {slug}",
            extra={"workflow_id": str(workflow.id), "provider_id": str(provider.id)},
        )
        return provider.id

    async def _store_contract(
        self,
        workflow: Workflow,
        provider_id: Optional[UUID],
        extraction: ExtractionResult,
        validation: ValidationResult,
    ) -> Contract:
        """Create the workflow's contract, or overwrite it when validation runs again."""
        existing = await self.contract_repo.get_by_workflow_id(workflow.id)
        if existing is None:
            return await self.contract_repo.create_contract(
                workflow_id=workflow.id,
                vertical_id=workflow.vertical_id,
                provider_id=provider_id,
                extracted_data=validation.contract_data,
                llm_confidence=extraction.llm_confidence,
                final_confidence=validation.final_confidence,
            )

        contract = await self.contract_repo.update_validation(
            existing.id,
            extracted_data=validation.contract_data,
            llm_confidence=extraction.llm_confidence,
            final_confidence=validation.final_confidence,
            provider_id=provider_id,
        )
        if contract is None:
            raise ContractNotFoundError(f"Contract '{existing.id}' not found")
        self.logger.info(
            "Overwrote contract from earlier validation attempt",
            extra={"workflow_id": str(workflow.id), "contract_id": str(contract.id)},
        )
        return contract

    async def _run_step(
        self,
        workflow_id: UUID,
        step_state: WorkflowState,
        step: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await step()
        except (InvalidStateTransitionError, WorkflowNotFoundError):
            raise
        except AppError as e:
            await self._record_failure(workflow_id, step_state, e.code, e.message, e.retryable)
            raise
        except Exception as e:
            await self._record_failure(workflow_id, step_state, AppError.code, str(e), False)
            raise

    async def _record_failure(
        self,
        workflow_id: UUID,
        step_state: WorkflowState,
        error_code: str,
        message: str,
        retryable: bool,
    ) -> None:
        self.logger.error(
            f"Workflow step failed: {message}",
            extra={
                "workflow_id": str(workflow_id),
                "step": step_state.value,
                "error_code": error_code,
                "retryable": retryable,
            },
        )
        try:
            await self.state_machine.fail_workflow(workflow_id, error_code, message, step_state.value)
        except AppError as fail_error:
            self.logger.error(
                f"Could not record failure on workflow: {fail_error.message}",
                extra={"workflow_id": str(workflow_id), "error_code": fail_error.code},
            )
