import json
from contextlib import asynccontextmanager

import pytest
from temporalio.exceptions import ApplicationError
from temporalio.testing import ActivityEnvironment

from contractflow.core.exceptions import LlmApiError, PdfEmptyError, WorkflowNotFoundError
from contractflow.temporal.activities import contract_activities
from contractflow.temporal.activities.contract_activities import (
    compare_tariffs_activity,
    extract_data_activity,
    parse_pdf_activity,
    to_application_error,
    validate_data_activity,
)

PDF_BYTES = b"%PDF-1.4 fake contract"


@pytest.fixture
def activity_pipeline(monkeypatch, pipeline):
    """Route every activity to the in-memory pipeline instead of a database session."""

    @asynccontextmanager
    async def fake_session_context():
        yield None

    monkeypatch.setattr(contract_activities, "get_async_session_context", fake_session_context)
    monkeypatch.setattr(contract_activities, "_shared_clients", lambda: (None, None))
    monkeypatch.setattr(contract_activities, "build_contract_pipeline", lambda *args: pipeline)
    return pipeline


class TestToApplicationError:

    def test_retryable_error(self):
        error = to_application_error(LlmApiError("Groq API returned 503", details="upstream"))

        assert isinstance(error, ApplicationError)
        assert error.type == "LLM_API_ERROR"
        assert error.non_retryable is False
        assert error.details == (
            {"code": "LLM_API_ERROR", "message": "Groq API returned 503", "details": "upstream", "retryable": True},
        )

    def test_non_retryable_error(self):
        error = to_application_error(WorkflowNotFoundError("Workflow not found"))

        assert error.non_retryable is True
        assert error.message == "Workflow not found"


class TestContractActivities:

    @pytest.mark.asyncio
    async def test_full_run(self, activity_pipeline, chat_model, valid_extraction):
        workflow = await activity_pipeline.ingest(PDF_BYTES, "energy", "vertrag.pdf")
        workflow_id = str(workflow.id)
        env = ActivityEnvironment()
        chat_model.outputs.append(json.dumps(valid_extraction))

        parsed = await env.run(parse_pdf_activity, workflow_id)
        extraction = await env.run(extract_data_activity, workflow_id, parsed["pdf_text"])
        validation = await env.run(validate_data_activity, workflow_id, extraction)
        comparison = await env.run(compare_tariffs_activity, workflow_id)

        assert parsed == {"pdf_text": "Stromliefervertrag Vattenfall", "char_count": 29}
        assert extraction["llm_confidence"] == 85
        assert validation["needs_review"] is False
        assert validation["state"] == "validated"
        assert validation["review_task_id"] is None
        assert comparison["state"] == "completed"

    @pytest.mark.asyncio
    async def test_low_confidence_reports_review(self, activity_pipeline, chat_model, valid_extraction):
        workflow = await activity_pipeline.ingest(PDF_BYTES, "energy")
        env = ActivityEnvironment()
        del valid_extraction["monthly_rate"]
        chat_model.outputs.append(json.dumps(valid_extraction))

        parsed = await env.run(parse_pdf_activity, str(workflow.id))
        extraction = await env.run(extract_data_activity, str(workflow.id), parsed["pdf_text"])
        validation = await env.run(validate_data_activity, str(workflow.id), extraction)

        assert validation["needs_review"] is True
        assert validation["state"] == "review_required"
        assert validation["review_task_id"] is not None
        assert validation["validation_errors"][0]["field"] == "monthly_rate"

    @pytest.mark.asyncio
    async def test_app_error_becomes_application_error(self, activity_pipeline, parser):
        workflow = await activity_pipeline.ingest(PDF_BYTES, "energy")
        parser.error = PdfEmptyError("PDF contains no extractable text")

        with pytest.raises(ApplicationError) as exc_info:
            await ActivityEnvironment().run(parse_pdf_activity, str(workflow.id))

        assert exc_info.value.type == "PDF_EMPTY"
        assert exc_info.value.non_retryable is True
