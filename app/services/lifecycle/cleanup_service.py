"""Deletion of transient parse artifacts.

Cleanup can be triggered by completion, by the client navigating away and by
the failure handler, in any order and any number of times. Every step is
keyed deterministically by parse id, so repeating it converges on the same
final state, and every failure is logged rather than raised.

Renders and the classification cache belong to the run that owns the parse.
A pipeline cleanup names its run and becomes a no-op once a retry has taken
the parse over.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AppError
from app.models.parse import ParseStatus
from app.repositories.parse_repository import ParseRepository
from app.services.cache.ttl_store import TTLStore
from app.services.storage_service import (
    StorageService,
    preview_archive_key,
    render_archive_key,
    source_document_key,
)
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


def classification_cache_key(parse_id: str) -> str:
    return f"classification:{parse_id}"


@dataclass
class CleanupReport:
    parse_id: str
    deleted_paths: List[str] = field(default_factory=list)
    cache_cleared: bool = False
    errors: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.errors

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class CleanupService:
    def __init__(self, session: AsyncSession, storage: StorageService, store: TTLStore):
        self.repository = ParseRepository(session)
        self.storage = storage
        self.store = store

    async def cleanup(
        self,
        parse_id: uuid.UUID,
        include_source: Optional[bool] = None,
        include_preview: bool = False,
        run_id: Optional[str] = None,
    ) -> CleanupReport:
        """Delete low-resolution renders and the classification cache.

        Args:
            parse_id: Parse whose artifacts are removed.
            include_source: Also delete the uploaded document. Defaults to
                True once the parse is finalized; a failed parse keeps its
                source so it can be retried.
            include_preview: Also delete the high-resolution preview archive.
            run_id: Run on whose behalf the cleanup happens. When another run
                owns the parse by now, nothing is deleted: the renders and
                cache belong to that run.
        """
        key = str(parse_id)
        report = CleanupReport(parse_id=key)

        try:
            parse = await self.repository.get_by_id(parse_id)
        except SQLAlchemyError as e:
            LOGGER.warning(f"Could not load parse {key} for cleanup: {e}", exc_info=True)
            report.errors.append(f"database: {e}")
            if run_id is not None:
                report.skipped_reason = "ownership unknown"
                return report
            parse = None
            include_source = include_source or False

        if run_id is not None and parse is not None and parse.active_run_id != run_id:
            LOGGER.info(
                f"Skipping cleanup of parse {key}: run {run_id} was superseded by {parse.active_run_id}",
                extra={"parse_id": key, "run_id": run_id},
            )
            report.skipped_reason = "superseded"
            return report

        if include_source is None:
            include_source = parse is None or ParseStatus(parse.status).is_finalized

        paths = [render_archive_key(key)]
        cleared_columns = ["render_key", "classification_cache_key"]
        if include_source:
            paths.append(source_document_key(key))
            cleared_columns.append("raw_document_key")
        if include_preview:
            paths.append(preview_archive_key(key))
            cleared_columns.append("preview_key")

        try:
            await self.storage.delete_objects(paths)
            report.deleted_paths = paths
        except AppError as e:
            LOGGER.warning(
                f"Storage cleanup failed for parse {key}: {e.message}",
                extra={"parse_id": key, "paths": paths},
                exc_info=True,
            )
            report.errors.append(f"storage: {e.message}")

        try:
            await self.store.delete(classification_cache_key(key))
            report.cache_cleared = True
        except SQLAlchemyError as e:
            LOGGER.warning(f"Classification cache cleanup failed for parse {key}: {e}", exc_info=True)
            report.errors.append(f"cache: {e}")

        # Only forget references whose objects are actually gone
        if report.deleted_paths and parse is not None:
            try:
                await self.repository.clear_fields(parse_id, cleared_columns, run_id=run_id)
            except SQLAlchemyError as e:
                LOGGER.warning(f"Clearing artifact references failed for parse {key}: {e}", exc_info=True)
                report.errors.append(f"database: {e}")

        LOGGER.info(
            f"Cleanup finished for parse {key}",
            extra={
                "parse_id": key,
                "run_id": run_id,
                "deleted_paths": report.deleted_paths,
                "cache_cleared": report.cache_cleared,
                "errors": report.errors,
            },
        )
        return report

    @staticmethod
    def deferred(parse_id: uuid.UUID, status: str) -> CleanupReport:
        """Report for a cleanup left to the pipeline still working on the parse."""
        LOGGER.info(f"Deferring cleanup of parse {parse_id} while it is {status}")
        return CleanupReport(parse_id=str(parse_id), skipped_reason=f"deferred while {status}")

    async def purge_expired_previews(self, now: Optional[datetime] = None) -> int:
        """Remove preview archives of parses finalized longer ago than the retention window."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=settings.storage.preview_retention_hours)
        parses = await self.repository.find_expired_previews(cutoff)

        purged = 0
        for parse in parses:
            try:
                await self.storage.delete_objects([preview_archive_key(str(parse.id))])
                await self.repository.clear_fields(parse.id, ["preview_key"])
                purged += 1
            except (AppError, SQLAlchemyError) as e:
                LOGGER.warning(f"Preview purge failed for parse {parse.id}: {e}", exc_info=True)

        if purged:
            LOGGER.info(f"Purged {purged} expired preview archives")
        return purged
