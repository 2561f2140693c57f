"""Owner of the Parse state machine.

All status changes go through ``_transition``, which issues a single
conditional UPDATE whose WHERE clause lists the statuses allowed to reach
the target (and, for pipeline writes, the run that owns the parse).
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidTransitionError, ParseNotFoundError, RunConflictError
from app.database.models import Parse
from app.models.parse import ParseStatus
from app.models.reconciliation import MergeResult, ReviewDecision
from app.repositories.parse_repository import ParseRepository
from app.services.lifecycle.cleanup_service import CleanupService, classification_cache_key
from app.services.lifecycle.state_machine import sources_for
from app.services.storage_service import StorageService, source_document_key
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


def new_run_id(parse_id: uuid.UUID, attempt: int) -> str:
    return f"parse-{parse_id}-attempt-{attempt}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleManager:
    def __init__(
        self,
        session: AsyncSession,
        storage: StorageService,
        cleanup_service: CleanupService,
    ):
        self.repository = ParseRepository(session)
        self.storage = storage
        self.cleanup_service = cleanup_service

    async def create_parse(
        self,
        owner_id: str,
        file_name: str,
        document_bytes: bytes,
    ) -> Tuple[Parse, str]:
        """Store the uploaded document and create a PENDING parse that owns its first run.

        Returns:
            The new Parse and the run id its pipeline must present.
        """
        parse_id = uuid.uuid4()
        key = source_document_key(str(parse_id))
        await self.storage.upload_bytes(key, document_bytes, content_type="application/pdf")

        run_id = new_run_id(parse_id, 1)
        parse = await self.repository.create_parse(
            owner_id=owner_id,
            file_name=file_name,
            parse_id=parse_id,
            raw_document_key=key,
            run_id=run_id,
        )
        LOGGER.info(
            f"Created parse {parse_id} for {file_name}",
            extra={"parse_id": str(parse_id), "owner_id": owner_id, "run_id": run_id},
        )
        return parse, run_id

    async def get_parse(self, parse_id: uuid.UUID, owner_id: Optional[str] = None) -> Parse:
        parse = await self.repository.get_by_id(parse_id)
        if parse is None or (owner_id is not None and parse.owner_id != owner_id):
            raise ParseNotFoundError(f"Parse {parse_id} not found")
        return parse

    async def list_parses(
        self,
        owner_id: str,
        status: Optional[ParseStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Parse]:
        return await self.repository.list_for_owner(owner_id, status=status, skip=skip, limit=limit)

    async def ensure_run(self, parse_id: uuid.UUID, run_id: str) -> Parse:
        """Raise RunConflictError unless ``run_id`` still owns the parse."""
        parse = await self.get_parse(parse_id)
        if parse.active_run_id != run_id:
            raise RunConflictError(
                f"Run {run_id} no longer owns parse {parse_id} (active: {parse.active_run_id})"
            )
        return parse

    async def mark_rendered(
        self,
        parse_id: uuid.UUID,
        run_id: str,
        page_count: int,
        render_key: str,
        preview_key: Optional[str],
    ) -> Parse:
        return await self._transition(
            parse_id,
            ParseStatus.RENDERED,
            {"page_count": page_count, "render_key": render_key, "preview_key": preview_key},
            run_id=run_id,
        )

    async def record_classification(
        self, parse_id: uuid.UUID, run_id: str, critical_pages: List[int]
    ) -> Parse:
        return await self._write_while(
            parse_id,
            ParseStatus.RENDERED,
            {
                "critical_pages": critical_pages,
                "classification_cache_key": classification_cache_key(str(parse_id)),
            },
            run_id,
        )

    async def record_extractions(
        self, parse_id: uuid.UUID, run_id: str, raw_extractions: List[Dict[str, Any]]
    ) -> Parse:
        return await self._write_while(
            parse_id, ParseStatus.RENDERED, {"raw_extractions": raw_extractions}, run_id
        )

    async def finalize(
        self,
        parse_id: uuid.UUID,
        run_id: str,
        merge_result: MergeResult,
        decision: ReviewDecision,
    ) -> Parse:
        """Write the canonical result, its status and the dropped source reference together."""
        target = ParseStatus.NEEDS_REVIEW if decision.needs_review else ParseStatus.COMPLETED
        warnings = list(merge_result.validation.errors) + list(merge_result.validation.warnings)
        return await self._transition(
            parse_id,
            target,
            {
                "canonical_extraction": merge_result.result.model_dump(mode="json"),
                "confidence_summary": {
                    "overall": decision.overall_confidence,
                    "fields": merge_result.field_confidences,
                    "provenance": merge_result.provenance,
                    "review_reasons": decision.reasons,
                    "handwriting_detected": merge_result.handwriting_detected,
                },
                "overall_confidence": decision.overall_confidence,
                "needs_review": decision.needs_review,
                "validation_warnings": warnings,
                "raw_document_key": None,
                "error_message": None,
                "finalized_at": _utcnow(),
            },
            run_id=run_id,
        )

    async def mark_failed(
        self,
        parse_id: uuid.UUID,
        status: ParseStatus,
        error_message: str,
        run_id: Optional[str] = None,
    ) -> Parse:
        if not status.is_failure:
            raise ValueError(f"{status.value} is not a failure status")
        return await self._transition(
            parse_id, status, {"error_message": error_message[:2000]}, run_id=run_id
        )

    async def retry(self, parse_id: uuid.UUID, owner_id: str) -> Tuple[Parse, str]:
        """Reset a failed parse to PENDING and claim a fresh run for it."""
        parse = await self.get_parse(parse_id, owner_id)
        if parse.raw_document_key is None:
            raise InvalidTransitionError(
                f"Parse {parse_id} cannot be retried: the source document is no longer available"
            )

        run_id = new_run_id(parse_id, parse.attempt_count + 1)
        updated = await self._transition(
            parse_id,
            ParseStatus.PENDING,
            {
                "active_run_id": run_id,
                "attempt_count": parse.attempt_count + 1,
                "error_message": None,
            },
            extra_conditions=[
                Parse.raw_document_key.is_not(None),
                Parse.attempt_count == parse.attempt_count,
            ],
        )
        LOGGER.info(f"Parse {parse_id} reset for retry", extra={"run_id": run_id})
        return updated, run_id

    async def archive(self, parse_id: uuid.UUID, owner_id: str) -> Parse:
        await self.get_parse(parse_id, owner_id)
        return await self._transition(parse_id, ParseStatus.ARCHIVED, {"archived_at": _utcnow()})

    async def delete(self, parse_id: uuid.UUID, owner_id: str) -> None:
        parse = await self.get_parse(parse_id, owner_id)
        await self._purge([parse.id])

    async def bulk_delete(self, parse_ids: List[uuid.UUID], owner_id: str) -> List[uuid.UUID]:
        """Delete the owner's parses among ``parse_ids``; ids of other owners are ignored."""
        parses = await self.repository.get_many_for_owner(parse_ids, owner_id)
        ids = [parse.id for parse in parses]
        await self._purge(ids)
        return ids

    async def _purge(self, parse_ids: List[uuid.UUID]) -> None:
        for parse_id in parse_ids:
            await self.cleanup_service.cleanup(parse_id, include_source=True, include_preview=True)
        deleted = await self.repository.delete_parses(parse_ids)
        LOGGER.info(f"Deleted {deleted} parses", extra={"parse_ids": [str(i) for i in parse_ids]})

    async def _write_while(
        self,
        parse_id: uuid.UUID,
        status: ParseStatus,
        values: Dict[str, Any],
        run_id: str,
    ) -> Parse:
        parse = await self.repository.conditional_update(parse_id, [status], values, run_id=run_id)
        if parse is None:
            await self._raise_for_mismatch(parse_id, status, run_id)
        return parse

    async def _transition(
        self,
        parse_id: uuid.UUID,
        target: ParseStatus,
        values: Dict[str, Any],
        run_id: Optional[str] = None,
        extra_conditions=(),
    ) -> Parse:
        parse = await self.repository.conditional_update(
            parse_id,
            sources_for(target),
            {**values, "status": target.value},
            run_id=run_id,
            extra_conditions=extra_conditions,
        )
        if parse is None:
            await self._raise_for_mismatch(parse_id, target, run_id)

        LOGGER.info(
            f"Parse {parse_id} moved to {target.value}",
            extra={"parse_id": str(parse_id), "status": target.value, "run_id": run_id},
        )
        return parse

    async def _raise_for_mismatch(
        self, parse_id: uuid.UUID, target: ParseStatus, run_id: Optional[str]
    ) -> None:
        current = await self.repository.get_by_id(parse_id)
        if current is None:
            raise ParseNotFoundError(f"Parse {parse_id} not found")
        if run_id is not None and current.active_run_id != run_id:
            raise RunConflictError(
                f"Run {run_id} no longer owns parse {parse_id} (active: {current.active_run_id})"
            )
        raise InvalidTransitionError(
            f"Parse {parse_id} cannot move from {current.status} to {target.value}"
        )
