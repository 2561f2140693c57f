"""Legal status transitions for a Parse."""

from typing import Dict, FrozenSet

from app.models.parse import ParseStatus

TRANSITIONS: Dict[ParseStatus, FrozenSet[ParseStatus]] = {
    ParseStatus.PENDING: frozenset(
        {ParseStatus.RENDERED, ParseStatus.RENDER_FAILED, ParseStatus.EXTRACT_FAILED}
    ),
    ParseStatus.RENDERED: frozenset(
        {ParseStatus.COMPLETED, ParseStatus.NEEDS_REVIEW, ParseStatus.EXTRACT_FAILED}
    ),
    ParseStatus.RENDER_FAILED: frozenset({ParseStatus.PENDING}),
    ParseStatus.EXTRACT_FAILED: frozenset({ParseStatus.PENDING}),
    ParseStatus.COMPLETED: frozenset({ParseStatus.ARCHIVED}),
    ParseStatus.NEEDS_REVIEW: frozenset({ParseStatus.ARCHIVED}),
    ParseStatus.ARCHIVED: frozenset(),
}


def can_transition(current: ParseStatus, target: ParseStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def sources_for(target: ParseStatus) -> FrozenSet[ParseStatus]:
    """Statuses from which ``target`` may be entered."""
    return frozenset(source for source, targets in TRANSITIONS.items() if target in targets)
