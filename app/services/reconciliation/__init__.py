from app.services.reconciliation.field_classification import (
    FIELD_POLICIES,
    FieldClass,
    MergeStrategy,
    assert_exhaustive,
)
from app.services.reconciliation.loan_type import LoanType, normalize_loan_type
from app.services.reconciliation.reconciler import Reconciler, deep_merge

__all__ = [
    "FIELD_POLICIES",
    "FieldClass",
    "LoanType",
    "MergeStrategy",
    "Reconciler",
    "assert_exhaustive",
    "deep_merge",
    "normalize_loan_type",
]
