"""Temporal connection shared by the API process and the worker."""

import asyncio
from typing import Optional

from temporalio.client import Client as TemporalClient
from temporalio.service import RPCError

from app.core.config import settings
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


async def connect_temporal(max_retries: int = 1, retry_delay: float = 5.0) -> TemporalClient:
    """Connect to the configured Temporal frontend, retrying on failure.

    Raises:
        RuntimeError: If the server stays unreachable after ``max_retries`` attempts.
    """
    target = f"{settings.temporal_host}:{settings.temporal_port}"
    for attempt in range(1, max_retries + 1):
        try:
            LOGGER.info(f"Connecting to Temporal at {target} (attempt {attempt}/{max_retries})")
            return await TemporalClient.connect(target, namespace=settings.temporal_namespace)
        except (RuntimeError, RPCError, OSError) as e:
            if attempt == max_retries:
                LOGGER.error(f"Could not reach Temporal at {target} after {max_retries} attempts: {e}")
                raise
            LOGGER.warning(f"Temporal connection attempt {attempt} failed: {e}. Retrying in {retry_delay}s")
            await asyncio.sleep(retry_delay)
    raise RuntimeError("max_retries must be at least 1")


class TemporalClientManager:
    """Connects on first use and hands the same client to every caller."""

    def __init__(self):
        self._client: Optional[TemporalClient] = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> TemporalClient:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = await connect_temporal()
        return self._client

    def reset(self) -> None:
        # Client has no close(); the connection goes with the last reference
        self._client = None


_temporal_manager = TemporalClientManager()


async def get_temporal_client() -> TemporalClient:
    return await _temporal_manager.get_client()


async def close_temporal_client() -> None:
    _temporal_manager.reset()
