"""Vision-model page classifier for contract packets."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import AppError, ClassificationError
from app.core.llm_client import VisionLLMClient
from app.models.classification import (
    ClassificationResult,
    PackageMetadata,
    PageImage,
    PageRole,
    PageRoleLabel,
    Party,
)
from app.prompts.system_prompts import PAGE_CLASSIFICATION_PROMPT
from app.utils.json_parser import parse_json_object
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

SAMPLE_FOOTER_COUNT = 5


def infer_role_from_label(label: str) -> PageRole:
    """Fallback role for pages the model marked critical without a usable role."""
    lowered = label.lower()
    if "counter" in lowered:
        return PageRole.COUNTER_OFFER
    if any(token in lowered for token in ("addendum", "amendment", "adm", "fvac")):
        return PageRole.ADDENDUM
    if "broker" in lowered:
        return PageRole.BROKER_INFO
    return PageRole.MAIN_CONTRACT


def _parse_role(raw_role: Any, label: str) -> PageRole:
    try:
        return PageRole(str(raw_role).strip().lower())
    except ValueError:
        return infer_role_from_label(label)


def _parse_party(raw_party: Any) -> Optional[Party]:
    if raw_party is None:
        return None
    try:
        return Party(str(raw_party).strip().lower())
    except ValueError:
        return None


class PageClassifier:
    """Finds the legally decisive pages of a packet and labels their role.

    Pages are sent to the vision model in batches. Batches run concurrently up
    to ``max_concurrency``; a failed batch is logged and skipped so one bad
    response does not lose the whole packet.
    """

    def __init__(
        self,
        llm_client: Optional[VisionLLMClient] = None,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.llm_client = llm_client or VisionLLMClient(
            api_key=settings.llm.openrouter_api_key,
            model=settings.llm.classifier_model,
            base_url=settings.llm.openrouter_api_url,
            timeout=settings.llm.timeout,
            max_retries=settings.llm.max_retries,
        )
        self.batch_size = batch_size or settings.classifier.batch_size
        self.max_concurrency = max_concurrency or settings.classifier.max_concurrency

    def _batches(self, pages: Sequence[PageImage]) -> List[List[PageImage]]:
        ordered = sorted(pages, key=lambda p: p.page_number)
        return [ordered[i : i + self.batch_size] for i in range(0, len(ordered), self.batch_size)]

    async def classify(self, pages: Sequence[PageImage]) -> ClassificationResult:
        """Classify every page of a packet.

        Args:
            pages: All rendered pages of the packet

        Returns:
            ClassificationResult; an empty critical set is valid

        Raises:
            ClassificationError: If every batch failed
        """
        batches = self._batches(pages)
        if not batches:
            return ClassificationResult()

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(batch: List[PageImage]) -> Optional[List[PageRoleLabel]]:
            async with semaphore:
                return await self._classify_batch(batch)

        batch_results = await asyncio.gather(*(run(batch) for batch in batches))
        failed = sum(1 for result in batch_results if result is None)

        if failed == len(batches):
            raise ClassificationError(f"All {failed} classification batches failed")

        labels: List[PageRoleLabel] = []
        for result in batch_results:
            labels.extend(result or [])

        result = self.merge_labels(labels)
        result.failed_batches = failed
        LOGGER.info(
            f"Classified {len(pages)} pages: {len(result.critical_page_numbers)} critical, "
            f"{failed}/{len(batches)} batches failed",
            extra={"critical_pages": result.critical_page_numbers},
        )
        return result

    async def _classify_batch(self, batch: List[PageImage]) -> Optional[List[PageRoleLabel]]:
        start, end = batch[0].page_number, batch[-1].page_number
        prompt = PAGE_CLASSIFICATION_PROMPT.format(
            batch_size=len(batch), batch_start=start, batch_end=end
        )
        try:
            response = await self.llm_client.generate_from_images(prompt, batch)
            payload = parse_json_object(response)
            return self._labels_from_payload(payload, batch)
        except AppError as e:
            LOGGER.warning(
                f"Classification batch for pages {start}-{end} failed: {e}",
                extra={"batch_start": start, "batch_end": end},
            )
            return None

    def _labels_from_payload(
        self, payload: Dict[str, Any], batch: List[PageImage]
    ) -> List[PageRoleLabel]:
        batch_pages = {page.page_number for page in batch}
        entries = payload.get("pages") or []
        labels: List[PageRoleLabel] = []

        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            critical = entry.get("critical")
            if critical is False or (critical is None and not entry.get("role")):
                continue

            page_number = entry.get("pdf_page") or entry.get("pdfPage")
            if isinstance(page_number, str) and page_number.isdigit():
                page_number = int(page_number)
            if page_number not in batch_pages and index < len(batch):
                # Fall back to image order when the model misreports the page number
                page_number = batch[index].page_number
            if page_number not in batch_pages:
                continue

            title = str(entry.get("title") or entry.get("titleSnippet") or "")
            form_code = str(entry.get("form_code") or entry.get("formCode") or "UNKNOWN")
            try:
                labels.append(
                    PageRoleLabel(
                        page_number=page_number,
                        form_code=form_code,
                        form_page=entry.get("form_page") or entry.get("formPage"),
                        role=_parse_role(entry.get("role"), f"{form_code} {title}"),
                        party=_parse_party(entry.get("party")),
                        label=title or f"{form_code} page {page_number}",
                        footer_text=entry.get("footer_text") or entry.get("footerText"),
                        confidence=entry.get("confidence") or 0,
                    )
                )
            except PydanticValidationError as e:
                LOGGER.warning(f"Skipping malformed classification for page {page_number}: {e}")
        return labels

    @staticmethod
    def merge_labels(labels: List[PageRoleLabel]) -> ClassificationResult:
        """Keep, per role and form page, only the occurrence with the highest page number."""
        kept: Dict[tuple, PageRoleLabel] = {}
        for label in labels:
            existing = kept.get(label.dedupe_key)
            if existing is None or label.page_number > existing.page_number:
                kept[label.dedupe_key] = label

        page_labels = {label.page_number: label for label in kept.values()}
        critical = sorted(page_labels)

        form_codes = sorted({label.form_code for label in page_labels.values()})
        footers = [
            page_labels[n].footer_text for n in critical if page_labels[n].footer_text
        ][:SAMPLE_FOOTER_COUNT]

        return ClassificationResult(
            critical_page_numbers=critical,
            page_labels=page_labels,
            package_metadata=PackageMetadata(
                detected_form_codes=form_codes,
                sample_footers=footers,
                total_detected_pages=len(labels),
                has_multiple_forms=len(form_codes) > 1,
            ),
        )
