"""Short-lived progress entries and their SSE stream, keyed by parse id."""

import asyncio
import json
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, Optional

from pydantic import BaseModel, Field

from app.core.config import settings
from app.services.cache.ttl_store import TTLStore
from app.services.progress_messages import format_phase_message
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

TERMINAL_PHASES = frozenset({"completed", "needs_review", "failed"})


class ProgressEntry(BaseModel):
    phase: str
    message: str
    done: bool = False
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def progress_key(parse_id: str) -> str:
    return f"progress:{parse_id}"


class ProgressChannel:
    """Publishes ``{phase, message, done}`` entries that expire when a parse goes quiet."""

    def __init__(self, store: TTLStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.cache.progress_ttl_seconds

    async def publish(
        self,
        parse_id: str,
        phase: str,
        metadata: Optional[Dict] = None,
    ) -> ProgressEntry:
        entry = ProgressEntry(
            phase=phase,
            message=format_phase_message(phase, metadata),
            done=phase in TERMINAL_PHASES,
        )
        await self.store.set(progress_key(parse_id), entry.model_dump(mode="json"), self.ttl_seconds)
        LOGGER.debug(f"Progress for parse {parse_id}: {entry.message}")
        return entry

    async def get(self, parse_id: str) -> Optional[ProgressEntry]:
        raw = await self.store.get(progress_key(parse_id))
        return ProgressEntry.model_validate(raw) if raw else None

    async def clear(self, parse_id: str) -> None:
        await self.store.delete(progress_key(parse_id))


class ProgressStreamer:
    """Polls the progress channel and emits server-sent events until the parse is done."""

    def __init__(self, channel: ProgressChannel, poll_interval: float = 1.0, idle_timeout: float = 120.0):
        self.channel = channel
        self.poll_interval = poll_interval
        self.idle_timeout = idle_timeout

    async def stream(self, parse_id: str) -> AsyncGenerator[str, None]:
        last_sent: Optional[ProgressEntry] = None
        idle_for = 0.0
        try:
            while True:
                entry = await self.channel.get(parse_id)
                if entry is not None and entry != last_sent:
                    last_sent = entry
                    idle_for = 0.0
                    yield self._format_sse("progress", entry.model_dump(mode="json"))
                    if entry.done:
                        break
                else:
                    yield self._format_sse("heartbeat", {"message": "keep-alive"})
                    idle_for += self.poll_interval
                    if idle_for >= self.idle_timeout:
                        yield self._format_sse("expired", {"message": "No recent progress"})
                        break
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            LOGGER.info(f"Progress stream cancelled for parse {parse_id}")
            raise

    @staticmethod
    def _format_sse(event: str, data: Dict) -> str:
        return f"event: {event}\ndata: {json.dumps(data)}\n\n"
