"""Activities running the parse pipeline stages.

Each activity opens its own session and delegates to ``ParsePipeline``.
Errors that retrying cannot fix are re-raised as non-retryable
``ApplicationError`` so Temporal stops immediately and the workflow's
failure handler records them.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional
from uuid import UUID

from temporalio import activity
from temporalio.exceptions import ApplicationError

from app.core.database import async_session_maker
from app.core.exceptions import (
    InvalidTransitionError,
    ParseNotFoundError,
    RenderError,
    RunConflictError,
)
from app.models.parse import ParseStatus
from app.pipeline.parse_pipeline import ParsePipeline
from app.services.cache.ttl_store import get_ttl_store
from app.services.storage_service import StorageService
from app.temporal.core.activity_registry import ActivityRegistry
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


@asynccontextmanager
async def pipeline_session(stage: str, parse_id: str) -> AsyncIterator[ParsePipeline]:
    """Yield a pipeline bound to a fresh session, translating permanent failures."""
    try:
        async with async_session_maker() as session:
            yield ParsePipeline(session, StorageService(), get_ttl_store())
    except RenderError as e:
        if e.retryable:
            raise
        raise ApplicationError(e.message, type="RenderError", non_retryable=True) from e
    except RunConflictError as e:
        activity.logger.warning(f"[{stage}] {e.message}", extra={"parse_id": parse_id})
        raise ApplicationError(e.message, type="RunConflictError", non_retryable=True) from e
    except (InvalidTransitionError, ParseNotFoundError) as e:
        activity.logger.error(f"[{stage}] {e.message}", extra={"parse_id": parse_id})
        raise ApplicationError(e.message, type=type(e).__name__, non_retryable=True) from e


@ActivityRegistry.register("parsing", "render_document")
@activity.defn
async def render_document(parse_id: str, run_id: str) -> Dict:
    """Rasterize the uploaded document at working and preview resolution."""
    activity.logger.info(f"[render] Starting for parse {parse_id}", extra={"run_id": run_id})
    activity.heartbeat("rendering")
    async with pipeline_session("render", parse_id) as pipeline:
        return await pipeline.render(UUID(parse_id), run_id)


@ActivityRegistry.register("parsing", "classify_pages")
@activity.defn
async def classify_pages(parse_id: str, run_id: str) -> Dict:
    activity.logger.info(f"[classify] Starting for parse {parse_id}", extra={"run_id": run_id})
    activity.heartbeat("classifying")
    async with pipeline_session("classify", parse_id) as pipeline:
        return await pipeline.classify(UUID(parse_id), run_id)


@ActivityRegistry.register("parsing", "extract_pages")
@activity.defn
async def extract_pages(parse_id: str, run_id: str) -> Dict:
    activity.logger.info(f"[extract] Starting for parse {parse_id}", extra={"run_id": run_id})
    activity.heartbeat("extracting")
    async with pipeline_session("extract", parse_id) as pipeline:
        return await pipeline.extract(UUID(parse_id), run_id)


@ActivityRegistry.register("parsing", "reconcile_and_finalize")
@activity.defn
async def reconcile_and_finalize(parse_id: str, run_id: str) -> Dict:
    activity.logger.info(f"[reconcile] Starting for parse {parse_id}", extra={"run_id": run_id})
    async with pipeline_session("reconcile", parse_id) as pipeline:
        return await pipeline.reconcile_and_finalize(UUID(parse_id), run_id)


@ActivityRegistry.register("parsing", "mark_parse_failed")
@activity.defn
async def mark_parse_failed(
    parse_id: str, run_id: Optional[str], status: str, error_message: str
) -> Dict:
    """Move the parse to a failure status; a parse that already moved on is left alone.

    Returns:
        ``marked`` telling whether the failure was recorded, and the status
        the parse is actually in afterwards (None once it was deleted).
    """
    async with async_session_maker() as session:
        pipeline = ParsePipeline(session, StorageService(), get_ttl_store())
        try:
            await pipeline.mark_failed(UUID(parse_id), run_id, ParseStatus(status), error_message)
        except ParseNotFoundError as e:
            activity.logger.warning(f"Not marking parse {parse_id} as {status}: {e.message}")
            return {"marked": False, "status": None}
        except InvalidTransitionError as e:
            activity.logger.warning(
                f"Not marking parse {parse_id} as {status}: {e.message}",
                extra={"run_id": run_id},
            )
            current = await pipeline.lifecycle.repository.get_by_id(UUID(parse_id))
            return {"marked": False, "status": current.status if current else None}
    activity.logger.info(f"Parse {parse_id} marked {status}", extra={"error": error_message})
    return {"marked": True, "status": status}


@ActivityRegistry.register("parsing", "cleanup_parse")
@activity.defn
async def cleanup_parse(parse_id: str, run_id: Optional[str] = None) -> Dict:
    """Release the run's transient artifacts; a superseded run leaves them to its successor."""
    async with async_session_maker() as session:
        pipeline = ParsePipeline(session, StorageService(), get_ttl_store())
        report = await pipeline.cleanup.cleanup(UUID(parse_id), run_id=run_id)
    return {
        "deleted_paths": report.deleted_paths,
        "cache_cleared": report.cache_cleared,
        "errors": report.errors,
        "skipped_reason": report.skipped_reason,
    }


@ActivityRegistry.register("maintenance", "purge_expired_artifacts")
@activity.defn
async def purge_expired_artifacts() -> Dict:
    """Remove preview archives past retention and expired TTL entries."""
    store = get_ttl_store()
    async with async_session_maker() as session:
        pipeline = ParsePipeline(session, StorageService(), store)
        previews = await pipeline.cleanup.purge_expired_previews()
    entries = await store.purge_expired()
    return {"previews_purged": previews, "entries_purged": entries}
