"""Sanity checks on a reconciled contract record."""

from app.models.extraction import UniversalExtractionResult
from app.models.reconciliation import ValidationReport
from app.services.reconciliation.dates import normalize_date_string

MIN_ADDRESS_LENGTH = 10


def validate_result(result: UniversalExtractionResult) -> ValidationReport:
    """Errors mean the record cannot be trusted; warnings flag gaps worth surfacing.

    Every check that fails also names the page-level fields behind it in
    ``problem_fields`` so a focused second extraction can target them.
    """
    report = ValidationReport()

    def flag(fields, error=None, warning=None):
        if error:
            report.errors.append(error)
        if warning:
            report.warnings.append(warning)
        for name in fields:
            if name not in report.problem_fields:
                report.problem_fields.append(name)

    if result.purchase_price is None or result.purchase_price <= 0:
        flag(["purchase_price"], error="Missing or invalid purchase price")

    if not result.buyer_names:
        flag(["buyer_names"], warning="Missing buyer names")
    if not result.seller_names:
        flag(["seller_names"], warning="Missing seller names")
    if not result.property_address or len(result.property_address) < MIN_ADDRESS_LENGTH:
        flag(["property_address"], warning="Missing or invalid property address")
    if not result.effective_date:
        flag(
            ["buyer_signature_dates", "seller_signature_dates"],
            warning="No effective date (no valid signature dates found)",
        )
    closing = normalize_date_string(result.closing_date)
    effective = normalize_date_string(result.effective_date)
    if closing and effective and closing < effective:
        flag(["closing_date"], warning="Closing date precedes effective date")

    return report
