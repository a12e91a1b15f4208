"""TTL cache over the prompt source with stale-on-error fallback."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from contractflow.core.exceptions import PromptSourceUnavailableError
from contractflow.core.langfuse_client import PromptSource, PromptTemplate
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass
class _CacheEntry:
    prompt: PromptTemplate
    fetched_at: float


class PromptCache:
    """Caches prompts per ``(name, label)``.

    A fresh entry is served without contacting the source. When a refresh
    fails, the last good entry is served (degraded) for as long as the
    source stays down; only a key that was never fetched raises.
    """

    def __init__(
        self,
        source: PromptSource,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            source: Prompt source to fetch from
            ttl_seconds: Age after which an entry is refreshed
            clock: Returns the current time in seconds
        """
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Tuple[str, Optional[str]], _CacheEntry] = {}

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        return self.clock() - entry.fetched_at < self.ttl_seconds

    async def get(self, name: str, label: Optional[str] = None) -> PromptTemplate:
        """Return the prompt for ``(name, label)``.

        Raises:
            PromptSourceUnavailableError: When the source fails and nothing is cached
        """
        key = (name, label)
        cached = self._entries.get(key)

        if cached is not None and self._is_fresh(cached):
            LOGGER.debug(f"Returning cached prompt {name} (label={label})")
            return cached.prompt

        try:
            prompt = await self.source.fetch_prompt(name, label)
        except Exception as e:
            if cached is not None:
                LOGGER.warning(
                    f"Prompt source unavailable, serving stale prompt {name} (label={label})",
                    extra={
                        "prompt_name": name,
                        "stale_for_seconds": round(self.clock() - cached.fetched_at, 1),
                        "error": str(e),
                    },
                )
                return cached.prompt

            LOGGER.error(
                f"Prompt source unavailable and no cached prompt {name} (label={label})",
                extra={
                    "prompt_name": name,
                    "error_code": PromptSourceUnavailableError.code,
                    "retryable": True,
                },
            )
            raise PromptSourceUnavailableError(
                f"Cannot fetch prompt '{name}' and no cached version is available",
                details=str(e),
                original_error=e,
            ) from e

        self._entries[key] = _CacheEntry(prompt=prompt, fetched_at=self.clock())
        LOGGER.info(f"Fetched prompt {name} (label={label})")
        return prompt

    async def warm_cache(self, names: Iterable[str], label: Optional[str] = None) -> Dict[str, int]:
        """Prefetch prompts concurrently.

        Returns:
            ``{"succeeded": n, "failed": n, "total": n}``
        """
        names = list(names)
        LOGGER.info(f"Warming prompt cache for {len(names)} prompts")

        results = await asyncio.gather(
            *(self.get(name, label) for name in names),
            return_exceptions=True,
        )

        failed = 0
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                failed += 1
                LOGGER.warning(f"Failed to warm prompt {name}: {result}")

        summary = {"succeeded": len(names) - failed, "failed": failed, "total": len(names)}
        LOGGER.info("Prompt cache warm-up complete", extra=summary)
        return summary

    def clear(self) -> None:
        self._entries.clear()
