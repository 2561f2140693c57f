"""Precedence class and merge strategy for every tracked contract field.

Adding a field to ``UniversalExtractionResult`` without listing it here makes
``assert_exhaustive`` fail, which the test suite and the reconciler both call.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from app.models.classification import PageRole, Party
from app.models.extraction import UniversalExtractionResult

SCHEMA_VERSION = "2025.1"


class FieldClass(str, Enum):
    BUYER_ORIGINATED = "buyer_originated"
    SELLER_ORIGINATED = "seller_originated"
    NEGOTIABLE = "negotiable"
    INFORMATIONAL = "informational"


class MergeStrategy(str, Enum):
    # Latest qualifying page replaces the value outright
    REPLACE = "replace"
    # Non-null sub-keys of the later page override, the rest are kept
    DEEP_MERGE = "deep_merge"


@dataclass(frozen=True)
class FieldPolicy:
    field_class: FieldClass
    strategy: MergeStrategy
    source_roles: Optional[FrozenSet[PageRole]] = None
    fallback_roles: Optional[FrozenSet[PageRole]] = None

    @property
    def originating_party(self) -> Optional[Party]:
        if self.field_class == FieldClass.BUYER_ORIGINATED:
            return Party.BUYER
        if self.field_class == FieldClass.SELLER_ORIGINATED:
            return Party.SELLER
        return None


_BROKER_ONLY = frozenset({PageRole.BROKER_INFO})
_MAIN_ONLY = frozenset({PageRole.MAIN_CONTRACT})

FIELD_POLICIES: Dict[str, FieldPolicy] = {
    "buyer_names": FieldPolicy(FieldClass.BUYER_ORIGINATED, MergeStrategy.REPLACE),
    "seller_names": FieldPolicy(FieldClass.SELLER_ORIGINATED, MergeStrategy.REPLACE),
    "purchase_price": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.REPLACE),
    "earnest_money_deposit": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.DEEP_MERGE),
    "financing": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.DEEP_MERGE),
    "closing_costs": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.DEEP_MERGE),
    "closing_date": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.REPLACE),
    "effective_date": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.REPLACE),
    "contingencies": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.DEEP_MERGE),
    "personal_property_included": FieldPolicy(FieldClass.NEGOTIABLE, MergeStrategy.REPLACE),
    "property_address": FieldPolicy(FieldClass.INFORMATIONAL, MergeStrategy.REPLACE),
    "escrow_holder": FieldPolicy(FieldClass.INFORMATIONAL, MergeStrategy.REPLACE),
    "brokers": FieldPolicy(
        FieldClass.INFORMATIONAL,
        MergeStrategy.DEEP_MERGE,
        source_roles=_BROKER_ONLY,
        fallback_roles=_MAIN_ONLY,
    ),
}


def policy_for(field_name: str) -> FieldPolicy:
    try:
        return FIELD_POLICIES[field_name]
    except KeyError:
        raise KeyError(f"Field '{field_name}' has no precedence class") from None


def unclassified_fields() -> FrozenSet[str]:
    """Schema fields missing from the table, plus table entries missing from the schema."""
    schema_fields = set(UniversalExtractionResult.model_fields)
    table_fields = set(FIELD_POLICIES)
    return frozenset(schema_fields ^ table_fields)


def assert_exhaustive() -> None:
    mismatched = unclassified_fields()
    if mismatched:
        raise AssertionError(
            f"Field classification out of sync with schema {SCHEMA_VERSION}: {sorted(mismatched)}"
        )
