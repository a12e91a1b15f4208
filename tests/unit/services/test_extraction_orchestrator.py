import json
import uuid
from unittest.mock import AsyncMock

import pytest

from contractflow.core.exceptions import LlmApiError, LlmMalformedResponseError, PromptSourceUnavailableError
from contractflow.core.llm_client import LLMResponse
from contractflow.services.extraction.orchestrator import (
    ExtractionOrchestrator,
    compile_prompt,
    read_confidence,
)
from contractflow.services.extraction.prompt_cache import PromptCache
from contractflow.services.provider_registry.config_resolver import MergedConfig


class ScriptedChatModel:
    """Chat model returning queued contents (or raising queued errors) in order."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    async def chat(self, system_prompt, user_message, temperature=0.1, max_tokens=4096, json_response=False):
        self.calls.append(
            {"system_prompt": system_prompt, "user_message": user_message, "json_response": json_response}
        )
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return LLMResponse(content=output, model="llama-3.3-70b-versatile", latency_ms=120)


@pytest.fixture
def energy_config():
    return MergedConfig(prompt_name="contract-extraction-energy", required_fields=["provider"])


@pytest.fixture
def prompt_cache(prompt_source):
    return PromptCache(prompt_source)


class TestCompilePrompt:

    def test_replaces_every_occurrence(self):
        template = "{{vertical}} contract, again {{ vertical }}: {{ contract_text }}"

        assert compile_prompt(template, {"vertical": "energy", "contract_text": "TEXT"}) == (
            "energy contract, again energy: TEXT"
        )

    def test_unknown_placeholders_are_kept(self):
        assert compile_prompt("{{ unknown }} {{vertical}}", {"vertical": "telco"}) == "{{ unknown }} telco"


class TestReadConfidence:

    @pytest.mark.parametrize(
        "value,expected",
        [(85, 85), (0, 0), (100, 100), (72.5, 72.5), (101, 0), (-1, 0), ("90", 0), (True, 0), (None, 0)],
    )
    def test_values(self, value, expected):
        assert read_confidence({"confidence": value}) == expected

    def test_missing(self):
        assert read_confidence({}) == 0


class TestExtractionOrchestrator:

    @pytest.mark.asyncio
    async def test_successful_extraction(self, prompt_cache, energy_config, valid_extraction):
        model = ScriptedChatModel(json.dumps(valid_extraction))
        orchestrator = ExtractionOrchestrator(prompt_cache, model, prompt_label="production")

        result = await orchestrator.extract("Vertrag ...", "energy", energy_config)

        assert result.extracted_data == valid_extraction
        assert result.llm_confidence == 85
        assert result.prompt_name == "contract-extraction-energy"
        assert result.model == "llama-3.3-70b-versatile"
        call = model.calls[0]
        assert call["system_prompt"] == "Extract the energy contract:\nVertrag ..."
        assert call["user_message"] == "Vertrag ..."
        assert call["json_response"] is True

    @pytest.mark.asyncio
    async def test_code_fenced_json_is_accepted(self, prompt_cache, energy_config):
        model = ScriptedChatModel('```json\n{"provider": "E.ON", "confidence": 90}\n```')
        orchestrator = ExtractionOrchestrator(prompt_cache, model)

        result = await orchestrator.extract("text", "energy", energy_config)

        assert result.extracted_data["provider"] == "E.ON"

    @pytest.mark.asyncio
    async def test_malformed_output_is_retried_once(self, prompt_cache, energy_config, valid_extraction):
        model = ScriptedChatModel("not json", json.dumps(valid_extraction))
        orchestrator = ExtractionOrchestrator(prompt_cache, model)

        result = await orchestrator.extract("text", "energy", energy_config)

        assert result.llm_confidence == 85
        assert len(model.calls) == 2
        assert model.calls[0] == model.calls[1]

    @pytest.mark.asyncio
    async def test_two_malformed_outputs_raise_with_last_content(self, prompt_cache, energy_config):
        model = ScriptedChatModel("[1, 2]", "still not an object")
        orchestrator = ExtractionOrchestrator(prompt_cache, model)

        with pytest.raises(LlmMalformedResponseError) as exc_info:
            await orchestrator.extract("text", "energy", energy_config)

        assert exc_info.value.details == "still not an object"
        assert exc_info.value.retryable is False
        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_model_errors_are_not_retried(self, prompt_cache, energy_config):
        model = ScriptedChatModel(LlmApiError("Groq API returned 500"), "{}")
        orchestrator = ExtractionOrchestrator(prompt_cache, model)

        with pytest.raises(LlmApiError):
            await orchestrator.extract("text", "energy", energy_config)

        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_confidence_defaults_to_zero(self, prompt_cache, energy_config):
        model = ScriptedChatModel('{"provider": "E.ON", "confidence": 150}')
        orchestrator = ExtractionOrchestrator(prompt_cache, model)

        result = await orchestrator.extract("text", "energy", energy_config)

        assert result.llm_confidence == 0

    @pytest.mark.asyncio
    async def test_provider_prompt_override_is_used(self, prompt_cache):
        model = ScriptedChatModel('{"confidence": 90}')
        orchestrator = ExtractionOrchestrator(prompt_cache, model)
        config = MergedConfig(prompt_name="vattenfall-extraction")

        result = await orchestrator.extract("text", "energy", config)

        assert result.prompt_name == "vattenfall-extraction"
        assert model.calls[0]["system_prompt"] == "Vattenfall energy prompt"

    @pytest.mark.asyncio
    async def test_unavailable_prompt_propagates(self, prompt_source, energy_config):
        prompt_source.fail = True
        model = ScriptedChatModel("{}")
        orchestrator = ExtractionOrchestrator(PromptCache(prompt_source), model)

        with pytest.raises(PromptSourceUnavailableError):
            await orchestrator.extract("text", "energy", energy_config)

        assert model.calls == []

    @pytest.mark.asyncio
    async def test_trace_uses_workflow_id(self, prompt_cache, energy_config):
        tracer = AsyncMock()
        workflow_id = uuid.uuid4()
        model = ScriptedChatModel('{"confidence": 90}')
        orchestrator = ExtractionOrchestrator(prompt_cache, model, tracer=tracer)

        await orchestrator.extract("text", "energy", energy_config, workflow_id=workflow_id, provider_hint="eon")

        generation = tracer.trace_generation.await_args.args[0]
        assert generation.trace_id == str(workflow_id)
        assert generation.name == "extraction-energy"
        assert generation.prompt_version == 3
        assert generation.metadata == {"vertical": "energy", "providerHint": "eon"}

    @pytest.mark.asyncio
    async def test_tracing_failure_does_not_fail_extraction(self, prompt_cache, energy_config):
        tracer = AsyncMock()
        tracer.trace_generation.side_effect = RuntimeError("langfuse down")
        model = ScriptedChatModel('{"confidence": 90}')
        orchestrator = ExtractionOrchestrator(prompt_cache, model, tracer=tracer)

        result = await orchestrator.extract("text", "energy", energy_config)

        assert result.llm_confidence == 90
