"""Pydantic models for per-page extractions and the canonical contract record."""

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel, to_snake

from app.models.classification import PageRole, Party

_NUMBER_CLEANUP = re.compile(r"[,$\s]")
_TRUE_STRINGS = {"true", "yes", "y", "x", "checked", "1"}
_FALSE_STRINGS = {"false", "no", "n", "unchecked", "0"}
_RELATIVE_DAYS = re.compile(
    r"^\s*(\d{1,3})\s*(?:calendar\s+)?(?:days?)?(?:\s+after.*)?\s*$", re.IGNORECASE
)


def coerce_number(value: Any) -> Optional[float]:
    """Turn ``"$510,000.00"``-style values into floats; unusable values become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = _NUMBER_CLEANUP.sub("", value)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def coerce_whole_number(value: Any) -> Optional[int]:
    number = coerce_number(value)
    return int(number) if number is not None else None


def coerce_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def coerce_string_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return None
    items = [coerce_string(item) for item in value]
    items = [item for item in items if item]
    return items or None


def coerce_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def coerce_flag(value: Any) -> bool:
    return bool(coerce_bool(value))


def coerce_closing_date(value: Any) -> Optional[Union[int, str]]:
    """Keep calendar dates as text; "30 days after acceptance" becomes ``30``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = coerce_string(value)
    if text is None:
        return None
    match = _RELATIVE_DAYS.match(text)
    return int(match.group(1)) if match else text


def coerce_confidence(value: Any) -> float:
    number = coerce_number(value)
    if number is None:
        return 0.0
    return max(0.0, min(100.0, number))


def coerce_field_scores(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    scores: Dict[str, float] = {}
    for key, raw in value.items():
        if coerce_number(raw) is not None:
            scores[to_snake(str(key))] = coerce_confidence(raw)
    return scores


class LenientModel(BaseModel):
    """Accepts both snake_case and camelCase keys from model output."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class EarnestMoneyDeposit(LenientModel):
    amount: Optional[float] = None
    holder: Optional[str] = None

    normalize_amount = field_validator("amount", mode="before")(coerce_number)
    normalize_holder = field_validator("holder", mode="before")(coerce_string)


class Financing(LenientModel):
    is_all_cash: Optional[bool] = None
    loan_type: Optional[str] = None
    loan_amount: Optional[float] = None

    normalize_is_all_cash = field_validator("is_all_cash", mode="before")(coerce_bool)
    normalize_loan_type = field_validator("loan_type", mode="before")(coerce_string)
    normalize_loan_amount = field_validator("loan_amount", mode="before")(coerce_number)


class Contingencies(LenientModel):
    inspection_days: Optional[int] = None
    appraisal_days: Optional[int] = None
    loan_days: Optional[int] = None
    sale_of_buyer_property: Optional[bool] = None

    normalize_days = field_validator(
        "inspection_days", "appraisal_days", "loan_days", mode="before"
    )(coerce_whole_number)
    normalize_sale_of_buyer_property = field_validator(
        "sale_of_buyer_property", mode="before"
    )(coerce_bool)


class ClosingCosts(LenientModel):
    buyer_pays: Optional[List[str]] = None
    seller_pays: Optional[List[str]] = None
    seller_credit_amount: Optional[float] = None

    normalize_allocations = field_validator(
        "buyer_pays", "seller_pays", mode="before"
    )(coerce_string_list)
    normalize_credit = field_validator("seller_credit_amount", mode="before")(coerce_number)


class Brokers(LenientModel):
    listing_brokerage: Optional[str] = None
    listing_agent: Optional[str] = None
    selling_brokerage: Optional[str] = None
    selling_agent: Optional[str] = None

    normalize_contacts = field_validator(
        "listing_brokerage", "listing_agent", "selling_brokerage", "selling_agent",
        mode="before",
    )(coerce_string)


class ContractTerms(LenientModel):
    """The tracked contract fields shared by per-page and merged records."""

    buyer_names: Optional[List[str]] = None
    seller_names: Optional[List[str]] = None
    property_address: Optional[str] = None
    purchase_price: Optional[float] = None
    earnest_money_deposit: Optional[EarnestMoneyDeposit] = None
    closing_date: Optional[str] = None
    financing: Optional[Financing] = None
    contingencies: Optional[Contingencies] = None
    closing_costs: Optional[ClosingCosts] = None
    brokers: Optional[Brokers] = None
    personal_property_included: Optional[List[str]] = None
    effective_date: Optional[str] = None
    escrow_holder: Optional[str] = None

    normalize_lists = field_validator(
        "buyer_names", "seller_names", "personal_property_included", mode="before"
    )(coerce_string_list)
    normalize_text = field_validator(
        "property_address", "effective_date", "escrow_holder", mode="before"
    )(coerce_string)
    normalize_price = field_validator("purchase_price", mode="before")(coerce_number)
    normalize_closing_date = field_validator("closing_date", mode="before")(coerce_string)


class UniversalExtractionResult(ContractTerms):
    """Canonical merged record for a contract packet."""

    model_config = ConfigDict(frozen=False)


class ExtractionConfidence(LenientModel):
    overall: float = 0.0
    field_scores: Dict[str, float] = Field(default_factory=dict)

    normalize_overall = field_validator("overall", mode="before")(coerce_confidence)
    normalize_field_scores = field_validator("field_scores", mode="before")(
        coerce_field_scores
    )

    def for_field(self, field_name: str) -> float:
        """Score for a top-level field, falling back to the page's overall score."""
        return self.field_scores.get(field_name, self.overall)


class PerPageExtraction(ContractTerms):
    """Candidate values read from a single critical page."""

    closing_date: Optional[Union[int, str]] = None
    buyer_signature_dates: Optional[List[str]] = None
    seller_signature_dates: Optional[List[str]] = None
    handwriting_detected: bool = False
    confidence: ExtractionConfidence = Field(default_factory=ExtractionConfidence)

    # Same name as the parent validator so it replaces it
    normalize_closing_date = field_validator("closing_date", mode="before")(
        coerce_closing_date
    )
    normalize_signature_dates = field_validator(
        "buyer_signature_dates", "seller_signature_dates", mode="before"
    )(coerce_string_list)
    normalize_handwriting = field_validator("handwriting_detected", mode="before")(
        coerce_flag
    )


class EnrichedPageExtraction(BaseModel):
    """A page extraction tagged with where it came from in the packet."""

    model_config = ConfigDict(frozen=True)

    page_number: int
    role: PageRole
    party: Optional[Party] = None
    label: str = ""
    extraction: PerPageExtraction
