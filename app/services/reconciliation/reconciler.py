"""Merge per-page extractions of a contract packet into one canonical record.

Each tracked field is resolved independently according to its precedence
class (see ``field_classification``):

* buyer/seller-originated fields start from the main contract and may only be
  overridden by counter-offers authored by that same party;
* negotiable fields let counter-offers and addenda outrank the main contract,
  with nested values deep-merged so partial amendments keep untouched sub-keys;
* informational fields take the first value seen and only change when a later
  page states a different one.

The reconciler is a pure function of its input: pages are re-sorted by page
number before merging so the same set of extractions always produces the same
result, provenance and merge log.
"""

import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.models.classification import PageRole
from app.models.extraction import EnrichedPageExtraction, UniversalExtractionResult
from app.models.reconciliation import MergeResult
from app.services.reconciliation.counter_detection import assign_counter_parties
from app.services.reconciliation.dates import (
    latest_signature_date,
    normalize_date_string,
    resolve_relative_date,
)
from app.services.reconciliation.field_classification import (
    FIELD_POLICIES,
    FieldClass,
    FieldPolicy,
    MergeStrategy,
    assert_exhaustive,
)
from app.services.reconciliation.loan_type import normalize_loan_type
from app.services.reconciliation.validation import validate_result
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

NEGOTIABLE_RANKS: Dict[PageRole, int] = {
    PageRole.MAIN_CONTRACT: 1,
    PageRole.COUNTER_OFFER: 2,
    PageRole.ADDENDUM: 2,
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay the non-null keys of ``override`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _field_value(page: EnrichedPageExtraction, field_name: str) -> Any:
    """Plain value of a field on a page; empty lists and all-null objects count as absent."""
    value = getattr(page.extraction, field_name)
    if hasattr(value, "model_dump"):
        value = value.model_dump(exclude_none=True)
    if value in ({}, []):
        return None
    return value


class Reconciler:
    """Resolves conflicting per-page candidates into a ``UniversalExtractionResult``."""

    def merge(
        self,
        pages: Sequence[EnrichedPageExtraction],
        form_codes: Optional[Dict[int, str]] = None,
    ) -> MergeResult:
        """Merge page extractions.

        Args:
            pages: Extractions for the critical pages that parsed successfully
            form_codes: Optional page number to form code map used to attribute counters

        Returns:
            MergeResult with the canonical record, provenance, confidences and log
        """
        assert_exhaustive()

        ordered = sorted(pages, key=lambda p: (p.page_number, p.role.value))
        ordered = assign_counter_parties(ordered, form_codes)

        merged: Dict[str, Any] = {}
        provenance: Dict[str, int] = {}
        merge_log: List[str] = []

        for field_name, policy in FIELD_POLICIES.items():
            candidates = self._candidates(field_name, policy, ordered)
            value, source_page = self._resolve(field_name, policy, candidates, provenance, merge_log)
            if value is not None:
                merged[field_name] = value
                provenance[field_name] = source_page

        self._apply_effective_date(ordered, merged, provenance, merge_log)
        self._normalize_closing_date(merged, provenance, merge_log)
        self._normalize_financing(merged, merge_log)

        result = UniversalExtractionResult.model_validate(merged)
        field_confidences = self._field_confidences(ordered, provenance)
        confidence = (
            round(sum(field_confidences.values()) / len(field_confidences), 2)
            if field_confidences
            else 0.0
        )
        validation = validate_result(result)
        for error in validation.errors:
            merge_log.append(f"validation error: {error}")

        LOGGER.info(
            f"Reconciled {len(ordered)} pages into {len(field_confidences)} fields "
            f"(confidence {confidence})",
            extra={"pages": [p.page_number for p in ordered], "errors": validation.errors},
        )

        return MergeResult(
            result=result,
            provenance=provenance,
            field_confidences=field_confidences,
            confidence=confidence,
            handwriting_detected=any(p.extraction.handwriting_detected for p in ordered),
            merge_log=merge_log,
            validation=validation,
        )

    def _candidates(
        self,
        field_name: str,
        policy: FieldPolicy,
        pages: List[EnrichedPageExtraction],
    ) -> List[EnrichedPageExtraction]:
        """Pages allowed to contribute to a field, in the order later-wins is applied."""
        if policy.field_class in (FieldClass.BUYER_ORIGINATED, FieldClass.SELLER_ORIGINATED):
            party = policy.originating_party
            eligible = [
                p for p in pages
                if p.role == PageRole.MAIN_CONTRACT
                or (p.role == PageRole.COUNTER_OFFER and p.party == party)
            ]
            return sorted(eligible, key=lambda p: (NEGOTIABLE_RANKS[p.role], p.page_number))

        if policy.field_class == FieldClass.NEGOTIABLE:
            eligible = [p for p in pages if p.role in NEGOTIABLE_RANKS]
            return sorted(eligible, key=lambda p: (NEGOTIABLE_RANKS[p.role], p.page_number))

        if policy.source_roles is not None:
            primary = [
                p for p in pages
                if p.role in policy.source_roles and _field_value(p, field_name) is not None
            ]
            if primary or policy.fallback_roles is None:
                return primary
            return [p for p in pages if p.role in policy.fallback_roles]

        return list(pages)

    def _resolve(
        self,
        field_name: str,
        policy: FieldPolicy,
        candidates: List[EnrichedPageExtraction],
        provenance: Dict[str, int],
        merge_log: List[str],
    ) -> Tuple[Any, Optional[int]]:
        current: Any = None
        source_page: Optional[int] = None

        for page in candidates:
            value = _field_value(page, field_name)
            if value is None:
                continue

            if current is None:
                current, source_page = value, page.page_number
                merge_log.append(f"{field_name} from {page.role.value} page {page.page_number}")
            elif policy.field_class == FieldClass.INFORMATIONAL and value == current:
                continue
            elif policy.strategy == MergeStrategy.DEEP_MERGE and isinstance(value, dict):
                current = deep_merge(current, value)
                merge_log.append(
                    f"{field_name} amended by {page.role.value} page {page.page_number} "
                    f"(keys: {', '.join(sorted(value))}; was page {source_page})"
                )
                source_page = page.page_number
            else:
                merge_log.append(
                    f"{field_name} overridden by {page.role.value} page {page.page_number} "
                    f"(was page {source_page})"
                )
                current, source_page = value, page.page_number

            if isinstance(value, dict):
                for sub_key in value:
                    provenance[f"{field_name}.{sub_key}"] = page.page_number

        return current, source_page

    def _apply_effective_date(
        self,
        pages: List[EnrichedPageExtraction],
        merged: Dict[str, Any],
        provenance: Dict[str, int],
        merge_log: List[str],
    ) -> None:
        """The contract takes effect on its last signature; stated dates are a fallback."""
        latest = latest_signature_date(pages)
        if latest is not None:
            merged["effective_date"], provenance["effective_date"] = latest
            merge_log.append(
                f"effective_date {latest[0]} from latest signature on page {latest[1]}"
            )
            return

        stated = merged.get("effective_date")
        if stated is not None:
            merged["effective_date"] = normalize_date_string(stated) or stated

    def _normalize_closing_date(
        self,
        merged: Dict[str, Any],
        provenance: Dict[str, int],
        merge_log: List[str],
    ) -> None:
        closing = merged.get("closing_date")
        if closing is None:
            return
        if isinstance(closing, int):
            effective = normalize_date_string(merged.get("effective_date"))
            resolved = resolve_relative_date(closing, effective)
            if resolved is None:
                merge_log.append(
                    f"closing_date of {closing} days left unresolved: no effective date"
                )
                del merged["closing_date"]
                del provenance["closing_date"]
            else:
                merge_log.append(f"closing_date {closing} days after {effective} -> {resolved}")
                merged["closing_date"] = resolved
            return
        merged["closing_date"] = normalize_date_string(closing) or closing

    def _normalize_financing(self, merged: Dict[str, Any], merge_log: List[str]) -> None:
        financing = merged.get("financing")
        if not financing or "loan_type" not in financing:
            return
        raw = financing["loan_type"]
        normalized = normalize_loan_type(raw)
        if normalized != raw:
            merge_log.append(f"financing.loan_type normalized: {raw!r} -> {normalized!r}")
        financing["loan_type"] = normalized

    def _field_confidences(
        self,
        pages: List[EnrichedPageExtraction],
        provenance: Dict[str, int],
    ) -> Dict[str, float]:
        by_page = {p.page_number: p for p in pages}
        confidences: Dict[str, float] = {}
        for field_name in FIELD_POLICIES:
            page_number = provenance.get(field_name)
            if page_number is None:
                continue
            confidences[field_name] = by_page[page_number].extraction.confidence.for_field(field_name)
        return confidences
