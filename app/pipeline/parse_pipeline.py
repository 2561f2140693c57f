"""Contract packet pipeline: render, classify, extract, reconcile.

Each stage is one Temporal activity. Stages exchange page images through
storage (``renders.zip``) and the classification through the TTL store, so
only ids and small summaries cross the workflow boundary. Every stage first
checks that its run still owns the parse.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import RenderError, RenderErrorKind, StorageError
from app.models.classification import ClassificationResult, PageImage, PageRoleLabel
from app.models.extraction import EnrichedPageExtraction, PerPageExtraction
from app.models.parse import ParseStatus
from app.models.reconciliation import MergeResult
from app.services.cache.ttl_store import TTLStore
from app.services.classification import PageClassifier
from app.services.extraction import PageExtractor
from app.services.lifecycle import CleanupService, LifecycleManager, classification_cache_key
from app.services.progress_channel import ProgressChannel
from app.services.reconciliation import Reconciler
from app.services.rendering import Renderer, pack_page_archive, unpack_page_archive
from app.services.review_gate import ReviewGate
from app.services.storage_service import (
    StorageService,
    preview_archive_key,
    render_archive_key,
)
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ParsePipeline:
    """Stage implementations for one parse.

    Attributes:
        lifecycle: State transitions and run ownership checks
        storage: Source document and page archives
        store: TTL store holding the classification cache and progress
        renderer, classifier, extractor, reconciler, review_gate: stage services
    """

    def __init__(
        self,
        session: AsyncSession,
        storage: StorageService,
        store: TTLStore,
        renderer: Optional[Renderer] = None,
        classifier: Optional[PageClassifier] = None,
        extractor: Optional[PageExtractor] = None,
        reconciler: Optional[Reconciler] = None,
        review_gate: Optional[ReviewGate] = None,
    ):
        self.storage = storage
        self.store = store
        self.cleanup = CleanupService(session, storage, store)
        self.lifecycle = LifecycleManager(session, storage, self.cleanup)
        self.progress = ProgressChannel(store)
        self._renderer = renderer
        self._classifier = classifier
        self._extractor = extractor
        self.reconciler = reconciler or Reconciler()
        self.review_gate = review_gate or ReviewGate()

    # Built on first use
    @property
    def renderer(self) -> Renderer:
        if self._renderer is None:
            self._renderer = Renderer()
        return self._renderer

    @property
    def classifier(self) -> PageClassifier:
        if self._classifier is None:
            self._classifier = PageClassifier()
        return self._classifier

    @property
    def extractor(self) -> PageExtractor:
        if self._extractor is None:
            self._extractor = PageExtractor()
        return self._extractor

    async def render(self, parse_id: UUID, run_id: str) -> Dict[str, Any]:
        """Rasterize the source document and move the parse to RENDERED."""
        parse = await self.lifecycle.ensure_run(parse_id, run_id)
        await self._publish(parse_id, "rendering", {"file_name": parse.file_name})

        if parse.raw_document_key is None:
            raise RenderError(
                f"Parse {parse_id} has no source document", kind=RenderErrorKind.INVALID_INPUT
            )
        document_bytes = await self.storage.download_bytes(parse.raw_document_key)

        pages = await self.renderer.render(document_bytes, settings.render.dpi)
        render_key = render_archive_key(str(parse_id))
        await self.storage.upload_bytes(
            render_key, pack_page_archive(pages), content_type="application/zip"
        )

        preview_pages = await self.renderer.render(document_bytes, settings.render.preview_dpi)
        preview_key = preview_archive_key(str(parse_id))
        await self.storage.upload_bytes(
            preview_key, pack_page_archive(preview_pages), content_type="application/zip"
        )

        await self.lifecycle.mark_rendered(
            parse_id, run_id, page_count=len(pages), render_key=render_key, preview_key=preview_key
        )
        await self._publish(parse_id, "rendered", {"page_count": len(pages)})
        return {"page_count": len(pages)}

    async def classify(self, parse_id: UUID, run_id: str) -> Dict[str, Any]:
        """Find the critical pages and cache their labels for the extraction stage."""
        parse = await self.lifecycle.ensure_run(parse_id, run_id)
        await self._publish(parse_id, "classifying", {"page_count": parse.page_count})

        classification = await self._classify_and_cache(parse_id)
        await self.lifecycle.record_classification(
            parse_id, run_id, classification.critical_page_numbers
        )
        await self._publish(
            parse_id, "classified", {"critical_count": len(classification.critical_page_numbers)}
        )
        return {
            "critical_pages": classification.critical_page_numbers,
            "failed_batches": classification.failed_batches,
            "form_codes": classification.package_metadata.detected_form_codes,
        }

    async def extract(self, parse_id: UUID, run_id: str) -> Dict[str, Any]:
        """Extract candidate values from every critical page."""
        await self.lifecycle.ensure_run(parse_id, run_id)

        classification = await self._cached_classification(parse_id)
        if classification is None:
            LOGGER.info(f"Classification cache expired for parse {parse_id}, reclassifying")
            classification = await self._classify_and_cache(parse_id)

        critical = set(classification.critical_page_numbers)
        await self._publish(parse_id, "extracting", {"critical_count": len(critical)})

        pages = [page for page in await self._load_pages(parse_id) if page.page_number in critical]
        outcomes = await self.extractor.extract(pages, classification.page_labels)

        raw_extractions = []
        for outcome in outcomes:
            label = classification.page_labels.get(outcome.page_number)
            raw_extractions.append(
                {
                    "page_number": outcome.page_number,
                    "role": label.role.value if label else None,
                    "party": label.party.value if label and label.party else None,
                    "form_code": label.form_code if label else None,
                    "label": label.label if label else "",
                    "extraction": outcome.extraction.model_dump(mode="json") if outcome.succeeded else None,
                    "error": outcome.error,
                }
            )

        await self.lifecycle.record_extractions(parse_id, run_id, raw_extractions)
        extracted = sum(1 for outcome in outcomes if outcome.succeeded)
        return {"extracted_pages": extracted, "dropped_pages": len(outcomes) - extracted}

    async def reconcile_and_finalize(self, parse_id: UUID, run_id: str) -> Dict[str, Any]:
        """Merge the stored page extractions, run the review gate and finalize.

        When the merged record fails validation, the problem fields are read
        once more from the critical pages before the review decision is made.
        """
        parse = await self.lifecycle.ensure_run(parse_id, run_id)
        await self._publish(parse_id, "reconciling")

        raw_extractions = parse.raw_extractions or []
        merge_result = self._merge(raw_extractions)

        if merge_result.validation.errors and settings.extractor.second_turn_enabled:
            revised = await self._second_turn(
                parse_id, raw_extractions, merge_result.validation.problem_fields
            )
            if revised is not None:
                await self.lifecycle.record_extractions(parse_id, run_id, revised)
                merge_result = self._merge(revised)

        decision = self.review_gate.evaluate(merge_result)

        finalized = await self.lifecycle.finalize(parse_id, run_id, merge_result, decision)
        phase = "needs_review" if decision.needs_review else "completed"
        await self._publish(parse_id, phase)
        return {
            "status": finalized.status,
            "needs_review": decision.needs_review,
            "overall_confidence": decision.overall_confidence,
        }

    async def mark_failed(
        self, parse_id: UUID, run_id: Optional[str], status: ParseStatus, error_message: str
    ) -> None:
        await self.lifecycle.mark_failed(parse_id, status, error_message, run_id=run_id)
        await self._publish(parse_id, "failed", {"error": error_message})

    @staticmethod
    def enriched_from_raw(raw_extractions: List[Dict[str, Any]]):
        """Rebuild reconciler input from the persisted per-page payloads."""
        pages: List[EnrichedPageExtraction] = []
        form_codes: Dict[int, str] = {}
        for entry in raw_extractions:
            if not entry.get("extraction") or not entry.get("role"):
                continue
            pages.append(
                EnrichedPageExtraction(
                    page_number=entry["page_number"],
                    role=entry["role"],
                    party=entry.get("party"),
                    label=entry.get("label") or "",
                    extraction=PerPageExtraction.model_validate(entry["extraction"]),
                )
            )
            if entry.get("form_code"):
                form_codes[entry["page_number"]] = entry["form_code"]
        return pages, form_codes

    def _merge(self, raw_extractions: List[Dict[str, Any]]) -> MergeResult:
        pages, form_codes = self.enriched_from_raw(raw_extractions)
        return self.reconciler.merge(pages, form_codes=form_codes)

    async def _second_turn(
        self,
        parse_id: UUID,
        raw_extractions: List[Dict[str, Any]],
        problem_fields: List[str],
    ) -> Optional[List[Dict[str, Any]]]:
        """Re-read ``problem_fields`` on every extracted page.

        Returns:
            The raw extractions with revised pages swapped in, or None when no
            page changed or the page images are gone
        """
        previous: Dict[int, PerPageExtraction] = {}
        labels: Dict[int, PageRoleLabel] = {}
        for entry in raw_extractions:
            if not entry.get("extraction") or not entry.get("role"):
                continue
            previous[entry["page_number"]] = PerPageExtraction.model_validate(entry["extraction"])
            labels[entry["page_number"]] = PageRoleLabel(
                page_number=entry["page_number"],
                role=entry["role"],
                party=entry.get("party"),
                form_code=entry.get("form_code") or "UNKNOWN",
                label=entry.get("label") or "",
            )
        if not previous:
            return None

        await self._publish(parse_id, "rechecking", {"field_count": len(problem_fields)})
        try:
            pages = await self._load_pages(parse_id)
        except StorageError as e:
            LOGGER.warning(
                f"Skipping second turn for parse {parse_id}: page images unavailable: {e.message}"
            )
            return None

        revised = await self.extractor.re_extract(pages, previous, problem_fields, labels)
        if not revised:
            return None

        updated = []
        for entry in raw_extractions:
            extraction = revised.get(entry["page_number"])
            if extraction is None:
                updated.append(entry)
                continue
            updated.append(
                {**entry, "extraction": extraction.model_dump(mode="json"), "second_turn": True}
            )
        LOGGER.info(
            f"Second turn revised pages {sorted(revised)} of parse {parse_id}",
            extra={"problem_fields": problem_fields},
        )
        return updated

    async def _classify_and_cache(self, parse_id: UUID) -> ClassificationResult:
        pages = await self._load_pages(parse_id)
        classification = await self.classifier.classify(pages)
        await self.store.set(
            classification_cache_key(str(parse_id)),
            classification.model_dump(mode="json"),
            settings.cache.classification_ttl_seconds,
        )
        return classification

    async def _cached_classification(self, parse_id: UUID) -> Optional[ClassificationResult]:
        raw = await self.store.get(classification_cache_key(str(parse_id)))
        return ClassificationResult.model_validate(raw) if raw else None

    async def _load_pages(self, parse_id: UUID) -> List[PageImage]:
        archive = await self.storage.download_bytes(render_archive_key(str(parse_id)))
        return unpack_page_archive(archive, settings.render.dpi)

    async def _publish(self, parse_id: UUID, phase: str, metadata: Optional[Dict] = None) -> None:
        try:
            await self.progress.publish(str(parse_id), phase, metadata)
        except SQLAlchemyError as e:
            LOGGER.warning(f"Could not publish progress for parse {parse_id}: {e}", exc_info=True)
