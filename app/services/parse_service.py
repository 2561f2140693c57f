"""Service behind the parses API: submission, retries and user-driven lifecycle actions."""

from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from temporalio.client import Client as TemporalClient

from app.core.config import settings
from app.core.exceptions import AppError, PreviewUnavailableError
from app.core.temporal_client import get_temporal_client
from app.database.models import Parse
from app.models.parse import ParseStatus
from app.services.cache.ttl_store import TTLStore, get_ttl_store
from app.services.lifecycle import CleanupReport, CleanupService, LifecycleManager
from app.services.progress_channel import ProgressChannel, ProgressEntry
from app.services.rendering import check_document
from app.services.storage_service import StorageService
from app.temporal.shared.workflows.parse_contract import ParseContractWorkflow
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ParseService:
    def __init__(
        self,
        session: AsyncSession,
        storage: Optional[StorageService] = None,
        store: Optional[TTLStore] = None,
        temporal_client_factory: Callable[[], Awaitable[TemporalClient]] = get_temporal_client,
    ):
        self.storage = storage or StorageService()
        self.store = store or get_ttl_store()
        self.cleanup_service = CleanupService(session, self.storage, self.store)
        self.lifecycle = LifecycleManager(session, self.storage, self.cleanup_service)
        self.progress = ProgressChannel(self.store)
        self.temporal_client_factory = temporal_client_factory

    async def submit(self, owner_id: str, file_name: str, content: bytes) -> Dict[str, str]:
        """Validate the upload, create the parse and schedule its pipeline.

        Raises:
            RenderError: If the document fails the signature or size check;
                nothing is stored in that case.
        """
        check_document(content, settings.render.max_bytes)

        parse, run_id = await self.lifecycle.create_parse(owner_id, file_name, content)
        await self.progress.publish(str(parse.id), "queued", {"file_name": file_name})
        await self._start_run(parse.id, run_id)
        return {"parse_id": str(parse.id), "workflow_id": run_id, "status": parse.status}

    async def retry(self, parse_id: UUID, owner_id: str) -> Dict[str, str]:
        parse, run_id = await self.lifecycle.retry(parse_id, owner_id)
        await self.progress.publish(str(parse.id), "queued", {"file_name": parse.file_name})
        await self._start_run(parse.id, run_id)
        return {"parse_id": str(parse.id), "workflow_id": run_id, "status": parse.status}

    async def get(self, parse_id: UUID, owner_id: str) -> Parse:
        return await self.lifecycle.get_parse(parse_id, owner_id)

    async def list_parses(
        self,
        owner_id: str,
        status: Optional[ParseStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Parse]:
        return await self.lifecycle.list_parses(owner_id, status=status, skip=skip, limit=limit)

    async def progress_for(self, parse_id: UUID, owner_id: str) -> Optional[ProgressEntry]:
        await self.lifecycle.get_parse(parse_id, owner_id)
        return await self.progress.get(str(parse_id))

    async def cleanup(self, parse_id: UUID, owner_id: str) -> CleanupReport:
        """Client-navigation trigger; safe to call any number of times.

        A parse still being processed keeps its artifacts; its own pipeline
        cleans up when it finishes.
        """
        parse = await self.lifecycle.get_parse(parse_id, owner_id)
        if ParseStatus(parse.status).is_active:
            return self.cleanup_service.deferred(parse_id, parse.status)
        return await self.cleanup_service.cleanup(parse_id, run_id=parse.active_run_id)

    async def preview_url(self, parse_id: UUID, owner_id: str) -> Dict[str, Any]:
        """Sign a download URL for the high-resolution preview archive.

        Raises:
            PreviewUnavailableError: If the archive was never produced or has been purged.
        """
        parse = await self.lifecycle.get_parse(parse_id, owner_id)
        if parse.preview_key is None:
            raise PreviewUnavailableError(f"Parse {parse_id} has no preview available")

        expires_in = settings.storage.preview_url_expires_in
        url = await self.storage.create_download_url(parse.preview_key, expires_in=expires_in)
        return {
            "parse_id": str(parse.id),
            "url": url,
            "expires_in": expires_in,
            "page_count": parse.page_count,
        }

    async def archive(self, parse_id: UUID, owner_id: str) -> Parse:
        return await self.lifecycle.archive(parse_id, owner_id)

    async def delete(self, parse_id: UUID, owner_id: str) -> None:
        await self.lifecycle.delete(parse_id, owner_id)
        await self.progress.clear(str(parse_id))

    async def bulk_delete(self, parse_ids: List[UUID], owner_id: str) -> List[UUID]:
        deleted = await self.lifecycle.bulk_delete(parse_ids, owner_id)
        for parse_id in deleted:
            await self.progress.clear(str(parse_id))
        return deleted

    async def _start_run(self, parse_id: UUID, run_id: str) -> None:
        try:
            client = await self.temporal_client_factory()
            await client.start_workflow(
                ParseContractWorkflow.run,
                {"parse_id": str(parse_id), "run_id": run_id},
                id=run_id,
                task_queue=settings.temporal_task_queue,
            )
        except Exception as e:
            # Never leave a parse PENDING without a run behind it
            LOGGER.error(f"Could not start pipeline for parse {parse_id}: {e}", exc_info=True)
            await self.lifecycle.mark_failed(
                parse_id, ParseStatus.RENDER_FAILED, f"Could not schedule processing: {e}", run_id=run_id
            )
            raise AppError(f"Could not schedule processing for parse {parse_id}", original_error=e) from e

        LOGGER.info(f"Started pipeline for parse {parse_id}", extra={"workflow_id": run_id})
