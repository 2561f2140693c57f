"""Per-page contract term extraction."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import AppError, UnparseableResponseError
from app.core.llm_client import VisionLLMClient
from app.models.classification import PageImage, PageRoleLabel
from app.models.extraction import EnrichedPageExtraction, PerPageExtraction
from app.prompts.system_prompts import PAGE_EXTRACTION_PROMPT, SECOND_TURN_PROMPT
from app.utils.json_parser import parse_json_object
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _recognized_keys() -> set:
    keys = set()
    for name, field in PerPageExtraction.model_fields.items():
        keys.add(name)
        if field.alias:
            keys.add(field.alias)
    return keys


RECOGNIZED_KEYS = _recognized_keys()

# Page-level fields a second turn may revise
REVISABLE_FIELDS = frozenset(PerPageExtraction.model_fields) - {"confidence", "handwriting_detected"}


class PageExtractionOutcome(BaseModel):
    """Result for one page: either an extraction or the reason it was dropped."""

    page_number: int
    extraction: Optional[PerPageExtraction] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.extraction is not None


def parse_page_response(response_text: str) -> PerPageExtraction:
    """Turn a raw model reply into a validated page extraction.

    Raises:
        UnparseableResponseError: If no JSON object can be recovered, none of its
            keys are contract fields, or it fails schema validation
    """
    payload = parse_json_object(response_text)
    if not RECOGNIZED_KEYS.intersection(payload):
        raise UnparseableResponseError(
            f"Response JSON has no contract fields: {sorted(payload)[:10]}"
        )
    try:
        return PerPageExtraction.model_validate(payload)
    except PydanticValidationError as e:
        raise UnparseableResponseError(f"Response failed schema validation: {e}", e) from e


def apply_second_turn(
    previous: PerPageExtraction,
    answer: PerPageExtraction,
    fields: Sequence[str],
) -> Optional[PerPageExtraction]:
    """Overlay the non-null answers for ``fields`` onto the first-turn extraction.

    Returns:
        The revised extraction, or None when no field changed
    """
    updates: Dict[str, Any] = {}
    scores = dict(previous.confidence.field_scores)
    for name in fields:
        value = getattr(answer, name)
        if value is None or value == getattr(previous, name):
            continue
        updates[name] = value
        scores[name] = answer.confidence.for_field(name)

    if not updates:
        return None
    confidence = previous.confidence.model_copy(update={"field_scores": scores})
    return previous.model_copy(update={**updates, "confidence": confidence})


class PageExtractor:
    """Extracts candidate contract values from each critical page independently."""

    def __init__(
        self,
        llm_client: Optional[VisionLLMClient] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.llm_client = llm_client or VisionLLMClient(
            api_key=settings.llm.openrouter_api_key,
            model=settings.llm.extractor_model,
            base_url=settings.llm.openrouter_api_url,
            timeout=settings.llm.timeout,
            max_retries=settings.llm.max_retries,
        )
        self.max_concurrency = max_concurrency or settings.extractor.max_concurrency

    async def extract(
        self,
        pages: Sequence[PageImage],
        labels: Optional[Dict[int, PageRoleLabel]] = None,
    ) -> List[PageExtractionOutcome]:
        """Extract every page; one outcome per input page, in page order.

        Transport failures propagate so the caller can retry the stage.
        Unparseable replies only drop the affected page.
        """
        labels = labels or {}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(page: PageImage) -> PageExtractionOutcome:
            async with semaphore:
                return await self._extract_page(page, labels.get(page.page_number))

        ordered = sorted(pages, key=lambda p: p.page_number)
        outcomes = await asyncio.gather(*(run(page) for page in ordered))

        dropped = [o.page_number for o in outcomes if not o.succeeded]
        LOGGER.info(
            f"Extracted {len(outcomes) - len(dropped)}/{len(outcomes)} pages",
            extra={"dropped_pages": dropped},
        )
        return list(outcomes)

    async def _extract_page(
        self, page: PageImage, label: Optional[PageRoleLabel]
    ) -> PageExtractionOutcome:
        page_label = label.label if label and label.label else f"PDF PAGE {page.page_number}"
        prompt = PAGE_EXTRACTION_PROMPT.format(page_label=page_label, page_number=page.page_number)
        response = await self.llm_client.generate_from_images(prompt, [page])

        try:
            extraction = parse_page_response(response)
        except UnparseableResponseError as e:
            LOGGER.warning(
                f"Excluding page {page.page_number}: unparseable extraction response",
                extra={"page_number": page.page_number, "error": str(e)},
            )
            return PageExtractionOutcome(page_number=page.page_number, error=str(e))

        return PageExtractionOutcome(page_number=page.page_number, extraction=extraction)

    async def re_extract(
        self,
        pages: Sequence[PageImage],
        previous: Dict[int, PerPageExtraction],
        problem_fields: Sequence[str],
        labels: Optional[Dict[int, PageRoleLabel]] = None,
    ) -> Dict[int, PerPageExtraction]:
        """Ask once more about ``problem_fields`` on pages that already have an extraction.

        Each page is still read on its own. A page whose second reply fails,
        for any reason, keeps its first-turn values.

        Returns:
            Revised extractions keyed by page number, only for pages where a
            problem field changed
        """
        fields = [name for name in problem_fields if name in REVISABLE_FIELDS]
        targets = sorted((p for p in pages if p.page_number in previous), key=lambda p: p.page_number)
        if not fields or not targets:
            return {}

        labels = labels or {}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(page: PageImage):
            async with semaphore:
                revised = await self._re_extract_page(
                    page, previous[page.page_number], fields, labels.get(page.page_number)
                )
                return page.page_number, revised

        results = await asyncio.gather(*(run(page) for page in targets))
        revised = {page_number: extraction for page_number, extraction in results if extraction is not None}
        LOGGER.info(
            f"Second turn revised {len(revised)}/{len(targets)} pages",
            extra={"problem_fields": fields, "revised_pages": sorted(revised)},
        )
        return revised

    async def _re_extract_page(
        self,
        page: PageImage,
        previous: PerPageExtraction,
        fields: List[str],
        label: Optional[PageRoleLabel],
    ) -> Optional[PerPageExtraction]:
        page_label = label.label if label and label.label else f"PDF PAGE {page.page_number}"
        prompt = SECOND_TURN_PROMPT.format(
            page_label=page_label,
            page_number=page.page_number,
            problem_fields=", ".join(fields),
            previous_json=json.dumps(previous.model_dump(mode="json", include=set(fields)), indent=2),
        )
        try:
            response = await self.llm_client.generate_from_images(prompt, [page])
            answer = parse_page_response(response)
        except AppError as e:
            LOGGER.warning(
                f"Second turn for page {page.page_number} failed, keeping first-turn values: {e.message}",
                extra={"page_number": page.page_number},
            )
            return None
        return apply_second_turn(previous, answer, fields)


def enrich_outcomes(
    outcomes: Sequence[PageExtractionOutcome],
    labels: Dict[int, PageRoleLabel],
) -> List[EnrichedPageExtraction]:
    """Attach role information to successful outcomes; failed pages are left out."""
    enriched: List[EnrichedPageExtraction] = []
    for outcome in outcomes:
        label = labels.get(outcome.page_number)
        if not outcome.succeeded or label is None:
            continue
        enriched.append(
            EnrichedPageExtraction(
                page_number=outcome.page_number,
                role=label.role,
                party=label.party,
                label=label.label,
                extraction=outcome.extraction,
            )
        )
    return enriched
