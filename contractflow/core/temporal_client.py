"""Temporal client connection management shared by the API and the worker."""

from typing import Optional

from temporalio.client import Client as TemporalClient

from contractflow.core.config import settings


class TemporalClientManager:
    """Lazily creates a Temporal client and keeps it around for reuse."""

    _client: Optional[TemporalClient] = None

    async def get_client(self) -> TemporalClient:
        """Get or create the Temporal client.

        Returns:
            TemporalClient: Connected Temporal client
        """
        if self._client is None:
            self._client = await TemporalClient.connect(
                settings.temporal.target_host,
                namespace=settings.temporal.namespace,
            )
        return self._client

    def reset(self) -> None:
        """Drop the cached client; the connection closes when it is released."""
        self._client = None


_temporal_manager = TemporalClientManager()


async def get_temporal_client() -> TemporalClient:
    """FastAPI dependency and helper returning the shared Temporal client."""
    return await _temporal_manager.get_client()


def close_temporal_client() -> None:
    _temporal_manager.reset()
