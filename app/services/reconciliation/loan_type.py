"""Loan type canonicalization."""

import re
from enum import Enum
from typing import Optional

from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LoanType(str, Enum):
    CONVENTIONAL = "Conventional"
    FHA = "FHA"
    VA = "VA"
    USDA = "USDA"
    OTHER = "Other"


_EXACT_MATCHES = {
    "CONVENTIONAL": LoanType.CONVENTIONAL,
    "FHA": LoanType.FHA,
    "VA": LoanType.VA,
    "USDA": LoanType.USDA,
    "OTHER": LoanType.OTHER,
}

_MISSPELLINGS = ("CONVENTIAL", "CONVENTONAL", "CONVENTINAL", "CONVENSIONAL")

# Checked in order; VA needs word boundaries so words like "NAVAJO" don't match
_PARTIAL_MATCHES = (
    (re.compile(r"CONVENTIONAL"), LoanType.CONVENTIONAL),
    (re.compile(r"\bFHA\b"), LoanType.FHA),
    (re.compile(r"\bV\.?A\b"), LoanType.VA),
    (re.compile(r"\bUSDA\b"), LoanType.USDA),
)


def normalize_loan_type(raw_loan_type: Optional[str]) -> Optional[str]:
    """Canonicalize a free-text loan type.

    Args:
        raw_loan_type: Loan type as read from the page, e.g. ``"fha"`` or ``"FHA/VA"``

    Returns:
        One of the ``LoanType`` values, or None when the input is empty
    """
    if raw_loan_type is None:
        return None

    normalized = " ".join(raw_loan_type.strip().upper().split())
    if not normalized:
        return None

    if normalized in _EXACT_MATCHES:
        return _EXACT_MATCHES[normalized].value

    if "/" in normalized or " OR " in normalized:
        LOGGER.debug(f"Combined loan type detected: '{raw_loan_type}' -> Other")
        return LoanType.OTHER.value

    if ("SELLER" in normalized and "FINANC" in normalized) or "OWNER FINANC" in normalized:
        LOGGER.debug(f"Seller financing detected: '{raw_loan_type}' -> Other")
        return LoanType.OTHER.value

    if any(misspelling in normalized for misspelling in _MISSPELLINGS):
        return LoanType.CONVENTIONAL.value

    for pattern, loan_type in _PARTIAL_MATCHES:
        if pattern.search(normalized):
            return loan_type.value

    LOGGER.debug(f"Unrecognized loan type: '{raw_loan_type}' -> Other")
    return LoanType.OTHER.value
