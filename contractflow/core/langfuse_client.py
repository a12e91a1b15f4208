"""Langfuse prompt management and tracing over its public REST API."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from contractflow.core.exceptions import PromptSourceUnavailableError
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class PromptTemplate:
    """A text prompt as stored in the prompt source."""

    name: str
    prompt: str
    version: Optional[int] = None
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TraceGeneration:
    """One model generation to record on a trace."""

    trace_id: str
    name: str
    model: str
    input: str
    output: str
    start_time: datetime
    end_time: datetime
    prompt_name: Optional[str] = None
    prompt_version: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PromptSource(Protocol):
    async def fetch_prompt(self, name: str, label: Optional[str] = None) -> PromptTemplate:
        ...


class GenerationTracer(Protocol):
    async def trace_generation(self, generation: TraceGeneration) -> None:
        ...


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class LangfuseClient:
    """Fetches prompts and records generations in Langfuse.

    Implements both ``PromptSource`` and ``GenerationTracer``.
    """

    def __init__(
        self,
        public_key: str,
        secret_key: str,
        base_url: str = "https://cloud.langfuse.com",
        timeout: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.public_key = public_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.logger = LOGGER

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.public_key, self.secret_key),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def fetch_prompt(self, name: str, label: Optional[str] = None) -> PromptTemplate:
        """Fetch a text prompt by name and label.

        Args:
            name: Prompt name
            label: Deployment label (e.g. ``production``)

        Returns:
            PromptTemplate with the raw template text

        Raises:
            PromptSourceUnavailableError: When the request fails or the prompt
                is not a text prompt
        """
        params = {"label": label} if label else None
        try:
            async with self._client() as client:
                response = await client.get(f"/api/public/v2/prompts/{name}", params=params)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PromptSourceUnavailableError(
                f"Failed to fetch prompt '{name}' from Langfuse",
                details=str(e),
                original_error=e,
            ) from e

        prompt = body.get("prompt") if isinstance(body, dict) else None
        if not isinstance(prompt, str):
            raise PromptSourceUnavailableError(
                f"Prompt '{name}' is not a text prompt",
                details=f"type={body.get('type') if isinstance(body, dict) else type(body).__name__}",
            )

        config = body.get("config")
        self.logger.debug(f"Fetched prompt {name} (label={label}, version={body.get('version')})")
        return PromptTemplate(
            name=body.get("name", name),
            prompt=prompt,
            version=body.get("version"),
            config=config if isinstance(config, dict) else {},
        )

    async def trace_generation(self, generation: TraceGeneration) -> None:
        """Send a trace and its generation in one ingestion batch.

        Raises:
            httpx.HTTPError: When the ingestion request fails
        """
        now = _iso(datetime.now(timezone.utc))
        metadata = {
            "promptName": generation.prompt_name,
            "promptVersion": generation.prompt_version,
            **generation.metadata,
        }
        batch = [
            {
                "id": str(uuid.uuid4()),
                "timestamp": now,
                "type": "trace-create",
                "body": {
                    "id": generation.trace_id,
                    "name": generation.name,
                    "metadata": generation.metadata,
                },
            },
            {
                "id": str(uuid.uuid4()),
                "timestamp": now,
                "type": "generation-create",
                "body": {
                    "id": str(uuid.uuid4()),
                    "traceId": generation.trace_id,
                    "name": generation.name,
                    "model": generation.model,
                    "input": generation.input,
                    "output": generation.output,
                    "startTime": _iso(generation.start_time),
                    "endTime": _iso(generation.end_time),
                    "metadata": metadata,
                },
            },
        ]

        async with self._client() as client:
            response = await client.post("/api/public/ingestion", json={"batch": batch})
            response.raise_for_status()

        self.logger.debug(f"Traced generation {generation.name} on trace {generation.trace_id}")
