"""Decide whether a reconciled contract needs a human to verify it."""

from typing import Optional

from app.core.config import ReviewSettings, settings
from app.models.reconciliation import MergeResult, ReviewDecision
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Confidence assumed for a field no page contributed; its absence is reported by validation
MISSING_FIELD_CONFIDENCE = 100.0


class ReviewGate:
    """Conservative, threshold-based review decision.

    Any single trigger forces review. A field that was never extracted
    does not trip its own threshold.
    """

    def __init__(self, thresholds: Optional[ReviewSettings] = None):
        self.thresholds = thresholds or settings.review

    def evaluate(self, merge_result: MergeResult) -> ReviewDecision:
        overall = merge_result.confidence
        price_confidence = merge_result.field_confidences.get("purchase_price", MISSING_FIELD_CONFIDENCE)
        buyer_names_confidence = merge_result.field_confidences.get("buyer_names", MISSING_FIELD_CONFIDENCE)

        reasons = []
        if overall < self.thresholds.min_overall_confidence:
            reasons.append(f"overall confidence {overall} below {self.thresholds.min_overall_confidence}")
        if price_confidence < self.thresholds.min_price_confidence:
            reasons.append(f"purchase price confidence {price_confidence} below {self.thresholds.min_price_confidence}")
        if buyer_names_confidence < self.thresholds.min_buyer_names_confidence:
            reasons.append(
                f"buyer names confidence {buyer_names_confidence} below "
                f"{self.thresholds.min_buyer_names_confidence}"
            )
        if merge_result.handwriting_detected:
            reasons.append("handwriting detected")
        reasons.extend(f"validation: {error}" for error in merge_result.validation.errors)

        decision = ReviewDecision(
            overall_confidence=overall,
            needs_review=bool(reasons),
            reasons=reasons,
        )
        LOGGER.info(
            f"Review gate: needs_review={decision.needs_review} at confidence {overall}",
            extra={"reasons": reasons},
        )
        return decision
