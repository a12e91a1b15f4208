"""Extraction of structured contract data from document text."""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from contractflow.core.config import settings
from contractflow.core.exceptions import LlmMalformedResponseError
from contractflow.core.langfuse_client import GenerationTracer, TraceGeneration
from contractflow.core.llm_client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ChatModel, LLMResponse
from contractflow.services.extraction.prompt_cache import PromptCache
from contractflow.services.extraction.retry_policy import BoundedRetryPolicy, RetryExhausted
from contractflow.services.provider_registry.config_resolver import MergedConfig
from contractflow.utils.json_parser import parse_json_object
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class ExtractionResult:
    extracted_data: Dict[str, Any]
    llm_confidence: float
    raw_response: str
    model: str
    latency_ms: int
    prompt_name: str


def compile_prompt(template: str, variables: Dict[str, str]) -> str:
    """Replace every ``{{ name }}`` placeholder with its value.

    Unknown placeholders are left untouched.
    """

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        return variables[key] if key in variables else match.group(0)

    return re.sub(r"\{\{\s*(\w+)\s*\}\}", _substitute, template)


def read_confidence(parsed: Dict[str, Any]) -> float:
    """Model-reported confidence, or 0 when absent, non-numeric or out of [0, 100]."""
    value = parsed.get("confidence")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if 0 <= value <= 100:
        return value
    return 0


class ExtractionOrchestrator:
    """Turns document text into extracted data using a prompt and a chat model.

    Malformed model output (anything that is not a JSON object) is retried
    exactly once with the same inputs. Model errors are not retried here.
    Tracing is best effort.
    """

    def __init__(
        self,
        prompt_cache: PromptCache,
        chat_model: ChatModel,
        tracer: Optional[GenerationTracer] = None,
        prompt_label: Optional[str] = None,
        retry_policy: Optional[BoundedRetryPolicy] = None,
    ):
        """Initialize the orchestrator.

        Args:
            prompt_cache: Cache resolving prompt templates
            chat_model: Chat completion capability
            tracer: Optional generation tracer
            prompt_label: Prompt label to resolve (defaults to settings)
            retry_policy: Policy for malformed output (defaults to 2 attempts, no backoff)
        """
        self.prompt_cache = prompt_cache
        self.chat_model = chat_model
        self.tracer = tracer
        self.prompt_label = prompt_label or settings.langfuse.prompt_label
        self.retry_policy = retry_policy or BoundedRetryPolicy(max_attempts=2, backoff_seconds=0)
        self.logger = LOGGER

    async def extract(
        self,
        document_text: str,
        vertical: str,
        config: MergedConfig,
        workflow_id: Optional[uuid.UUID] = None,
        provider_hint: Optional[str] = None,
    ) -> ExtractionResult:
        """Extract contract data from document text.

        Args:
            document_text: Text parsed from the PDF
            vertical: Vertical slug, substituted into the prompt
            config: Merged provider config (supplies the prompt name)
            workflow_id: Workflow the extraction belongs to, used as trace id
            provider_hint: Provider slug, when already known

        Returns:
            ExtractionResult

        Raises:
            PromptSourceUnavailableError: When no prompt can be resolved
            LlmMalformedResponseError: When both attempts return invalid JSON
            LlmApiError, LlmAuthError: Propagated from the chat model
        """
        log_extra = {"workflow_id": str(workflow_id) if workflow_id else None, "step": "extracting"}
        self.logger.info(f"Starting extraction for vertical {vertical}", extra=log_extra)

        template = await self.prompt_cache.get(config.prompt_name, self.prompt_label)
        system_prompt = compile_prompt(
            template.prompt,
            {"contract_text": document_text, "vertical": vertical},
        )

        async def attempt(attempt_number: int) -> Tuple[LLMResponse, Optional[Dict[str, Any]]]:
            response = await self.chat_model.chat(
                system_prompt,
                document_text,
                temperature=DEFAULT_TEMPERATURE,
                max_tokens=DEFAULT_MAX_TOKENS,
                json_response=True,
            )
            parsed = parse_json_object(response.content)
            if parsed is None:
                self.logger.warning(
                    f"Model returned malformed JSON on attempt {attempt_number}",
                    extra={**log_extra, "error_code": LlmMalformedResponseError.code},
                )
            return response, parsed

        try:
            response, parsed = await self.retry_policy.execute(
                attempt, accept=lambda outcome: outcome[1] is not None
            )
        except RetryExhausted as e:
            last_response, _ = e.last_result
            self.logger.error(
                "Model returned malformed JSON on every attempt",
                extra={**log_extra, "error_code": LlmMalformedResponseError.code, "retryable": False},
            )
            raise LlmMalformedResponseError(
                f"Model returned invalid JSON on all {e.attempts} attempts",
                details=last_response.content,
            ) from e

        confidence = read_confidence(parsed)
        result = ExtractionResult(
            extracted_data=parsed,
            llm_confidence=confidence,
            raw_response=response.content,
            model=response.model,
            latency_ms=response.latency_ms,
            prompt_name=template.name,
        )

        await self._trace(result, system_prompt, vertical, template.version, workflow_id, provider_hint)

        self.logger.info(
            "Extraction completed",
            extra={**log_extra, "model": result.model, "latency_ms": result.latency_ms, "confidence": confidence},
        )
        return result

    async def _trace(
        self,
        result: ExtractionResult,
        system_prompt: str,
        vertical: str,
        prompt_version: Optional[int],
        workflow_id: Optional[uuid.UUID],
        provider_hint: Optional[str],
    ) -> None:
        if self.tracer is None:
            return

        end_time = datetime.now(timezone.utc)
        trace_id = str(workflow_id) if workflow_id else str(uuid.uuid4())
        try:
            await self.tracer.trace_generation(
                TraceGeneration(
                    trace_id=trace_id,
                    name=f"extraction-{vertical}",
                    model=result.model,
                    input=system_prompt,
                    output=result.raw_response,
                    start_time=end_time - timedelta(milliseconds=result.latency_ms),
                    end_time=end_time,
                    prompt_name=result.prompt_name,
                    prompt_version=prompt_version,
                    metadata={"vertical": vertical, "providerHint": provider_hint},
                )
            )
        except Exception as e:
            self.logger.warning(
                f"Failed to trace generation (non-blocking): {e}",
                extra={"trace_id": trace_id},
            )
