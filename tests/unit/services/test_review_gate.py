"""Unit tests for the review gate thresholds."""

import pytest

from app.core.config import ReviewSettings
from app.models.extraction import UniversalExtractionResult
from app.models.reconciliation import MergeResult, ValidationReport
from app.services.review_gate import ReviewGate


@pytest.fixture
def gate():
    return ReviewGate(ReviewSettings())


def _merge_result(confidence=85.0, price=95.0, buyer_names=95.0, handwriting=False, errors=None):
    field_confidences = {}
    if price is not None:
        field_confidences["purchase_price"] = price
    if buyer_names is not None:
        field_confidences["buyer_names"] = buyer_names
    return MergeResult(
        result=UniversalExtractionResult(purchase_price=500000, buyer_names=["Alice Buyer"]),
        field_confidences=field_confidences,
        confidence=confidence,
        handwriting_detected=handwriting,
        validation=ValidationReport(errors=errors or []),
    )


def test_confident_result_passes(gate):
    decision = gate.evaluate(_merge_result())

    assert decision.needs_review is False
    assert decision.reasons == []
    assert decision.overall_confidence == 85.0


def test_overall_threshold_boundary(gate):
    assert gate.evaluate(_merge_result(confidence=80.0)).needs_review is False
    assert gate.evaluate(_merge_result(confidence=79.99)).needs_review is True


def test_low_price_confidence_forces_review(gate):
    decision = gate.evaluate(_merge_result(price=89.0))

    assert decision.needs_review is True
    assert any("purchase price" in reason for reason in decision.reasons)


def test_missing_field_confidence_does_not_trip_its_threshold(gate):
    decision = gate.evaluate(_merge_result(price=None, buyer_names=None))

    assert decision.needs_review is False
    assert decision.reasons == []


def test_missing_price_is_still_caught_by_validation(gate):
    decision = gate.evaluate(
        _merge_result(price=None, errors=["Missing or invalid purchase price"])
    )

    assert decision.needs_review is True
    assert decision.reasons == ["validation: Missing or invalid purchase price"]


def test_handwriting_forces_review(gate):
    decision = gate.evaluate(_merge_result(confidence=99.0, handwriting=True))

    assert decision.needs_review is True
    assert decision.reasons == ["handwriting detected"]


def test_validation_errors_force_review(gate):
    decision = gate.evaluate(_merge_result(errors=["Missing or invalid purchase price"]))

    assert decision.needs_review is True
    assert "validation: Missing or invalid purchase price" in decision.reasons
