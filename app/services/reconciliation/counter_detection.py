"""Decide which party authored each counter-offer page."""

from typing import List, Optional

from app.models.classification import PageRole, Party
from app.models.extraction import EnrichedPageExtraction
from app.services.reconciliation.dates import page_signature_date
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

BUYER_FORM_CODES = frozenset({"BCO"})
SELLER_FORM_CODES = frozenset({"SCO", "SMCO"})


def detect_counter_origin(
    page: EnrichedPageExtraction,
    all_pages: List[EnrichedPageExtraction],
    form_code: Optional[str] = None,
) -> Optional[Party]:
    """Infer the authoring party of a counter-offer page.

    Signals are tried strongest first: an explicit party from the classifier,
    the form code, the page title, which side signed, and finally the usual
    seller/buyer alternation of counters ordered by signature date.

    Returns:
        The authoring party, or None when nothing points either way
    """
    if page.party is not None:
        return page.party

    code = (form_code or "").upper()
    if code in BUYER_FORM_CODES:
        return Party.BUYER
    if code in SELLER_FORM_CODES:
        return Party.SELLER

    title = page.label.lower()
    if "buyer counter" in title:
        return Party.BUYER
    if "seller counter" in title:
        return Party.SELLER

    has_buyer_signatures = bool(page.extraction.buyer_signature_dates)
    has_seller_signatures = bool(page.extraction.seller_signature_dates)
    if has_buyer_signatures and not has_seller_signatures:
        return Party.BUYER
    if has_seller_signatures and not has_buyer_signatures:
        return Party.SELLER

    counters = [p for p in all_pages if p.role == PageRole.COUNTER_OFFER]
    has_main = any(p.role == PageRole.MAIN_CONTRACT for p in all_pages)

    if len(counters) == 1 and has_main:
        # Standard flow: the first response to an offer comes from the seller
        return Party.SELLER

    if len(counters) >= 2:
        ordered = sorted(counters, key=lambda p: (page_signature_date(p), p.page_number))
        index = next(i for i, p in enumerate(ordered) if p.page_number == page.page_number)
        return Party.SELLER if index % 2 == 0 else Party.BUYER

    return None


def assign_counter_parties(
    pages: List[EnrichedPageExtraction],
    form_codes: Optional[dict] = None,
) -> List[EnrichedPageExtraction]:
    """Return ``pages`` with ``party`` filled in on counter-offers where it can be inferred."""
    form_codes = form_codes or {}
    resolved: List[EnrichedPageExtraction] = []
    for page in pages:
        if page.role != PageRole.COUNTER_OFFER or page.party is not None:
            resolved.append(page)
            continue
        party = detect_counter_origin(page, pages, form_codes.get(page.page_number))
        if party is None:
            LOGGER.warning(
                f"Could not determine which party authored counter page {page.page_number}",
                extra={"page_number": page.page_number},
            )
        else:
            LOGGER.debug(f"Counter page {page.page_number} attributed to {party.value}")
        resolved.append(page.model_copy(update={"party": party}))
    return resolved
