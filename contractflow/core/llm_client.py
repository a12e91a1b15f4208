"""Chat-completion client for the extraction model.

``ChatModel`` is the capability the extraction orchestrator depends on.
``GroqChatClient`` implements it against Groq's OpenAI-compatible API with
httpx; any other OpenAI-compatible endpoint works by changing the URL.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from contractflow.core.exceptions import (
    LlmApiError,
    LlmAuthError,
    LlmMalformedResponseError,
    LlmRateLimitedError,
)
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 4096


@dataclass
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    """Text returned by one chat completion."""

    content: str
    model: str
    latency_ms: int
    usage: LLMUsage = field(default_factory=LLMUsage)


class ChatModel(Protocol):
    async def chat(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        json_response: bool = False,
    ) -> LLMResponse:
        ...


class GroqChatClient:
    """Client for Groq chat completions.

    Status mapping: 401 -> ``LlmAuthError``, 429 -> ``LlmRateLimitedError``,
    anything else (5xx, other 4xx, timeouts, transport errors) -> ``LlmApiError``.
    No retries happen here; retry decisions belong to the caller.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.groq.com/openai/v1/chat/completions",
        model: str = "llama-3.3-70b-versatile",
        timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Groq client.

        Args:
            api_key: Groq API key
            api_url: Chat completions endpoint
            model: Model name to use
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.transport = transport
        self.logger = LOGGER

        LOGGER.info(f"Initialized Groq client with model {self.model}")

    async def chat(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        json_response: bool = False,
    ) -> LLMResponse:
        """Run one chat completion.

        Args:
            system_prompt: System message (the compiled extraction prompt)
            user_message: User message (the document text)
            temperature: Sampling temperature
            max_tokens: Maximum output tokens
            json_response: Request ``response_format = json_object``

        Returns:
            LLMResponse with the message content and usage

        Raises:
            LlmAuthError: On 401
            LlmRateLimitedError: On 429
            LlmApiError: On any other HTTP or transport failure
            LlmMalformedResponseError: When the response carries no content
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_response:
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        self.logger.debug(
            f"Calling Groq chat completion: {self.api_url}",
            extra={"model": self.model, "timeout": self.timeout},
        )

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, headers=headers, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            raise self._map_status_error(e, self._elapsed_ms(start)) from e
        except httpx.TimeoutException as e:
            self.logger.error(
                "Groq request timed out",
                extra={"model": self.model, "error_code": LlmApiError.code, "retryable": True},
            )
            raise LlmApiError("Groq API request timed out", details=str(e), original_error=e) from e
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(
                "Groq API call failed",
                extra={"model": self.model, "error_code": LlmApiError.code, "retryable": True},
            )
            raise LlmApiError("Groq API call failed", details=str(e), original_error=e) from e

        latency_ms = self._elapsed_ms(start)
        if not isinstance(body, dict):
            body = {}
        choices = body.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None

        if not content:
            self.logger.error(
                "Groq returned empty response",
                extra={"model": self.model, "latency_ms": latency_ms,
                       "error_code": LlmMalformedResponseError.code, "retryable": False},
            )
            raise LlmMalformedResponseError("Groq returned empty response content")

        usage = body.get("usage") or {}
        result = LLMResponse(
            content=content,
            model=body.get("model", self.model),
            latency_ms=latency_ms,
            usage=LLMUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
        )

        self.logger.info(
            "Groq chat completion succeeded",
            extra={
                "model": result.model,
                "latency_ms": latency_ms,
                "prompt_tokens": result.usage.prompt_tokens,
                "completion_tokens": result.usage.completion_tokens,
            },
        )
        return result

    def _map_status_error(self, error: httpx.HTTPStatusError, latency_ms: int) -> LlmApiError | LlmAuthError:
        status_code = error.response.status_code
        try:
            error_body = error.response.text[:500]
        except Exception:
            error_body = "Could not read response body"

        context = {"model": self.model, "status_code": status_code, "latency_ms": latency_ms}

        if status_code == 401:
            self.logger.error(
                "Groq authentication failed",
                extra={**context, "error_code": LlmAuthError.code, "retryable": False},
            )
            return LlmAuthError("Groq API authentication failed", details=error_body, original_error=error)

        if status_code == 429:
            self.logger.warning(
                "Groq rate limited",
                extra={**context, "error_code": LlmRateLimitedError.code, "retryable": True},
            )
            return LlmRateLimitedError("Groq API rate limited", details=error_body, original_error=error)

        self.logger.error(
            "Groq API error",
            extra={**context, "error_code": LlmApiError.code, "retryable": True},
        )
        return LlmApiError(f"Groq API returned {status_code}", details=error_body, original_error=error)

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
