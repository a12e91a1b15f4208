import json
import uuid

import pytest

from contractflow.core.exceptions import (
    ContractNotFoundError,
    DatabaseConnectionError,
    InvalidStateTransitionError,
    LlmApiError,
    PdfEmptyError,
    ProviderNotFoundError,
    VerticalNotFoundError,
    WorkflowNotFoundError,
)
from contractflow.schemas.enums import ReviewAction, WorkflowState
from contractflow.services.pipeline.contract_pipeline import provider_slug_from

PDF_BYTES = b"%PDF-1.4 fake contract"


async def _parsed_workflow(pipeline):
    workflow = await pipeline.ingest(PDF_BYTES, "energy", "vertrag.pdf")
    text = await pipeline.parse_document(workflow.id, PDF_BYTES)
    return workflow, text


class TestProviderSlug:

    @pytest.mark.parametrize(
        "data,expected",
        [
            ({"provider": "Vattenfall"}, "vattenfall"),
            ({"provider": "  Deutsche   Telekom "}, "deutsche-telekom"),
            ({"provider": ""}, None),
            ({"provider": 42}, None),
            ({}, None),
        ],
    )
    def test_slug(self, data, expected):
        assert provider_slug_from(data) == expected


class TestIngestAndParse:

    @pytest.mark.asyncio
    async def test_ingest_stores_pdf(self, pipeline, tmp_path):
        workflow = await pipeline.ingest(PDF_BYTES, "energy", "../vertrag 2026.pdf")

        assert workflow.state == "pending"
        assert workflow.pdf_filename == "../vertrag 2026.pdf"
        assert workflow.pdf_storage_path == str(tmp_path / str(workflow.id) / "__vertrag_2026.pdf")
        assert (tmp_path / str(workflow.id) / "__vertrag_2026.pdf").read_bytes() == PDF_BYTES

    @pytest.mark.asyncio
    async def test_ingest_with_known_provider(self, pipeline, provider_repo, energy_vertical):
        provider = provider_repo.add_provider("vattenfall", energy_vertical)

        workflow = await pipeline.ingest(PDF_BYTES, "energy", provider_slug="vattenfall")

        assert workflow.provider_id == provider.id

    @pytest.mark.asyncio
    async def test_ingest_unknown_provider(self, pipeline, workflow_repo):
        with pytest.raises(ProviderNotFoundError):
            await pipeline.ingest(PDF_BYTES, "energy", provider_slug="nobody")

        assert workflow_repo.workflows == {}

    @pytest.mark.asyncio
    async def test_ingest_unknown_vertical(self, pipeline):
        with pytest.raises(VerticalNotFoundError):
            await pipeline.ingest(PDF_BYTES, "gas")

    @pytest.mark.asyncio
    async def test_parse_moves_to_extracting(self, pipeline, state_machine):
        workflow, text = await _parsed_workflow(pipeline)

        assert text == "Stromliefervertrag Vattenfall"
        assert (await state_machine.get_workflow(workflow.id)).state == "extracting"

    @pytest.mark.asyncio
    async def test_parse_reads_stored_file(self, pipeline, parser):
        workflow = await pipeline.ingest(PDF_BYTES, "energy", "vertrag.pdf")

        await pipeline.parse_document(workflow.id)

        assert parser.received == [PDF_BYTES]

    @pytest.mark.asyncio
    async def test_parse_failure_fails_workflow(self, pipeline, parser, state_machine):
        parser.error = PdfEmptyError("PDF contains no extractable text")
        workflow = await pipeline.ingest(PDF_BYTES, "energy")

        with pytest.raises(PdfEmptyError):
            await pipeline.parse_document(workflow.id, PDF_BYTES)

        failed = await state_machine.get_workflow(workflow.id)
        assert failed.state == "failed"
        assert failed.retry_count == 1
        assert failed.error_message == "PDF contains no extractable text"
        history = await state_machine.get_history(workflow.id)
        assert history[-1].transition_metadata["errorCode"] == "PDF_EMPTY"
        assert history[-1].transition_metadata["failedAtStep"] == "parsing_pdf"


class TestExtractValidateCompare:

    @pytest.mark.asyncio
    async def test_confident_extraction_is_validated_then_completed(
        self, pipeline, chat_model, valid_extraction, contract_repo, review_repo, state_machine
    ):
        workflow, text = await _parsed_workflow(pipeline)
        chat_model.outputs.append(json.dumps(valid_extraction))

        outcome = await pipeline.extract_and_validate(workflow.id, text)

        assert outcome.workflow.state == "validated"
        assert outcome.validation.final_confidence == 85
        assert outcome.review_task is None
        assert await review_repo.list_pending() == []
        assert float(outcome.contract.final_confidence) == 85

        compared = await pipeline.compare(workflow.id)

        assert compared.workflow.state == "completed"
        assert compared.comparison["current_tariff"] == "Vattenfall Current Plan"
        assert compared.comparison["monthly_rate"] == 50
        history = await state_machine.get_history(workflow.id)
        assert [log.to_state for log in history][-3:] == ["validated", "comparing", "completed"]

    @pytest.mark.asyncio
    async def test_low_confidence_routes_to_review(self, pipeline, chat_model, valid_extraction, review_repo):
        workflow, text = await _parsed_workflow(pipeline)
        del valid_extraction["monthly_rate"]
        chat_model.outputs.append(json.dumps(valid_extraction))

        outcome = await pipeline.extract_and_validate(workflow.id, text)

        assert outcome.workflow.state == "review_required"
        assert outcome.validation.final_confidence == 70
        assert outcome.review_task is not None
        assert outcome.review_task.contract_id == outcome.contract.id
        assert [task.id for task in await review_repo.list_pending()] == [outcome.review_task.id]

    @pytest.mark.asyncio
    async def test_validation_retry_reuses_contract_and_review_task(
        self, pipeline, chat_model, valid_extraction, contract_repo, review_repo, workflow_repo, review_manager
    ):
        workflow, text = await _parsed_workflow(pipeline)
        del valid_extraction["monthly_rate"]
        chat_model.outputs.append(json.dumps(valid_extraction))
        extraction = await pipeline.extract(workflow.id, text)

        def database_down(_workflow):
            raise DatabaseConnectionError("Database error while updating Workflow")

        workflow_repo.concurrent_writer = database_down
        with pytest.raises(DatabaseConnectionError):
            await pipeline.validate(workflow.id, extraction)

        outcome = await pipeline.validate(workflow.id, extraction)

        assert outcome.workflow.state == "review_required"
        assert list(contract_repo.contracts) == [outcome.contract.id]
        assert [task.id for task in await review_repo.list_pending()] == [outcome.review_task.id]

        corrected = dict(valid_extraction, monthly_rate=55)
        await review_manager.apply_action(workflow.id, ReviewAction.CORRECT, corrected_data=corrected)
        compared = await pipeline.compare(workflow.id)

        assert compared.comparison["monthly_rate"] == 55
        assert await review_repo.list_pending() == []

    @pytest.mark.asyncio
    async def test_detected_provider_rules_apply(
        self, pipeline, chat_model, valid_extraction, provider_repo, energy_vertical, state_machine
    ):
        provider = provider_repo.add_provider("vattenfall", energy_vertical)
        provider_repo.add_config(provider, validation_rules={"monthly_rate": {"min": 60, "max": 500}})
        workflow, text = await _parsed_workflow(pipeline)
        chat_model.outputs.append(json.dumps(valid_extraction))

        outcome = await pipeline.extract_and_validate(workflow.id, text)

        assert outcome.contract.provider_id == provider.id
        assert (await state_machine.get_workflow(workflow.id)).provider_id == provider.id
        assert [issue.code for issue in outcome.validation.validation_errors] == ["out_of_range"]
        assert outcome.workflow.state == "review_required"

    @pytest.mark.asyncio
    async def test_model_failure_then_successful_retry(
        self, pipeline, chat_model, valid_extraction, state_machine
    ):
        workflow, text = await _parsed_workflow(pipeline)
        chat_model.outputs.extend([LlmApiError("Groq API returned 503"), json.dumps(valid_extraction)])

        with pytest.raises(LlmApiError):
            await pipeline.extract(workflow.id, text)

        failed = await state_machine.get_workflow(workflow.id)
        assert failed.state == "failed"
        assert failed.error_message == "Groq API returned 503"

        result = await pipeline.extract(workflow.id, text)

        assert result.llm_confidence == 85
        retried = await state_machine.get_workflow(workflow.id)
        assert retried.state == "validating"
        assert retried.retry_count == 1
        history = await state_machine.get_history(workflow.id)
        assert {"retryAttempt": 1} in [log.transition_metadata for log in history]

    @pytest.mark.asyncio
    async def test_repeated_failures_reject(self, pipeline, chat_model, state_machine):
        workflow, text = await _parsed_workflow(pipeline)
        chat_model.outputs.extend([LlmApiError("Groq API returned 500")] * 3)

        for _ in range(3):
            with pytest.raises(LlmApiError):
                await pipeline.extract(workflow.id, text)

        rejected = await state_machine.get_workflow(workflow.id)
        assert rejected.state == "rejected"
        assert rejected.retry_count == 3

        with pytest.raises(InvalidStateTransitionError):
            await pipeline.extract(workflow.id, text)
        assert (await state_machine.get_workflow(workflow.id)).retry_count == 3

    @pytest.mark.asyncio
    async def test_out_of_order_step_does_not_count_as_failure(self, pipeline, state_machine):
        workflow = await pipeline.ingest(PDF_BYTES, "energy")

        with pytest.raises(InvalidStateTransitionError):
            await pipeline.compare(workflow.id)

        unchanged = await state_machine.get_workflow(workflow.id)
        assert unchanged.state == "pending"
        assert unchanged.retry_count == 0

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, pipeline):
        with pytest.raises(WorkflowNotFoundError):
            await pipeline.extract(uuid.uuid4(), "text")

    @pytest.mark.asyncio
    async def test_compare_without_contract_fails_workflow(self, pipeline, state_machine):
        workflow = await pipeline.ingest(PDF_BYTES, "energy")
        for state in (
            WorkflowState.PARSING_PDF, WorkflowState.EXTRACTING, WorkflowState.VALIDATING, WorkflowState.VALIDATED,
        ):
            await state_machine.transition(workflow.id, state)

        with pytest.raises(ContractNotFoundError):
            await pipeline.compare(workflow.id)

        failed = await state_machine.get_workflow(workflow.id)
        assert failed.state == "failed"
