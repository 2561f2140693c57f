"""Date normalization helpers for reconciled contract terms."""

import re
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from app.models.extraction import EnrichedPageExtraction

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")
_TEXT_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%b %d %Y", "%d %B %Y")

# Two-digit years at or below this pivot are 20xx, above are 19xx
TWO_DIGIT_YEAR_PIVOT = 50


def normalize_date_string(value: Optional[str]) -> Optional[str]:
    """Normalize ``M/D/YY``, ``M-D-YYYY``, ISO and spelled-out dates to ``YYYY-MM-DD``.

    Returns None when the value is empty or not a real calendar date.
    """
    if not value or not isinstance(value, str):
        return None
    cleaned = value.strip()

    iso = _ISO_DATE.match(cleaned)
    if iso:
        return _safe_iso(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    numeric = _NUMERIC_DATE.match(cleaned)
    if numeric:
        month, day, year_text = numeric.groups()
        year = int(year_text)
        if len(year_text) == 2:
            year += 2000 if year <= TWO_DIGIT_YEAR_PIVOT else 1900
        return _safe_iso(year, int(month), int(day))

    for fmt in _TEXT_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _safe_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def latest_signature_date(
    pages: Iterable[EnrichedPageExtraction],
) -> Optional[Tuple[str, int]]:
    """Latest normalized buyer or seller signature date and the page it was found on."""
    candidates: List[Tuple[str, int]] = []
    for page in pages:
        extraction = page.extraction
        for raw in (extraction.buyer_signature_dates or []) + (extraction.seller_signature_dates or []):
            normalized = normalize_date_string(raw)
            if normalized:
                candidates.append((normalized, page.page_number))
    if not candidates:
        return None
    # Ties on date resolve to the later page
    return max(candidates)


def page_signature_date(page: EnrichedPageExtraction) -> str:
    """Latest signature date on one page, or an empty string when unsigned."""
    latest = latest_signature_date([page])
    return latest[0] if latest else ""


def resolve_relative_date(days: int, base_date: Optional[str]) -> Optional[str]:
    """Turn "N days after acceptance" into a calendar date."""
    if base_date is None:
        return None
    base = date.fromisoformat(base_date)
    return (base + timedelta(days=days)).isoformat()
