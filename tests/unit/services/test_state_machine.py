"""Legality of Parse status transitions."""

import pytest

from app.models.parse import ParseStatus
from app.services.lifecycle import TRANSITIONS, can_transition, sources_for


def test_every_status_has_an_entry():
    assert set(TRANSITIONS) == set(ParseStatus)


@pytest.mark.parametrize(
    "current, target",
    [
        (ParseStatus.PENDING, ParseStatus.RENDERED),
        (ParseStatus.PENDING, ParseStatus.RENDER_FAILED),
        (ParseStatus.RENDERED, ParseStatus.COMPLETED),
        (ParseStatus.RENDERED, ParseStatus.NEEDS_REVIEW),
        (ParseStatus.RENDERED, ParseStatus.EXTRACT_FAILED),
        (ParseStatus.RENDER_FAILED, ParseStatus.PENDING),
        (ParseStatus.EXTRACT_FAILED, ParseStatus.PENDING),
        (ParseStatus.COMPLETED, ParseStatus.ARCHIVED),
        (ParseStatus.NEEDS_REVIEW, ParseStatus.ARCHIVED),
    ],
)
def test_legal_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (ParseStatus.PENDING, ParseStatus.COMPLETED),
        (ParseStatus.COMPLETED, ParseStatus.PENDING),
        (ParseStatus.COMPLETED, ParseStatus.RENDER_FAILED),
        (ParseStatus.NEEDS_REVIEW, ParseStatus.COMPLETED),
        (ParseStatus.ARCHIVED, ParseStatus.PENDING),
        (ParseStatus.RENDER_FAILED, ParseStatus.RENDERED),
    ],
)
def test_illegal_transitions(current, target):
    assert not can_transition(current, target)


def test_finalized_statuses_never_fail():
    for status in (ParseStatus.COMPLETED, ParseStatus.NEEDS_REVIEW, ParseStatus.ARCHIVED):
        assert not any(target.is_failure for target in TRANSITIONS[status])


def test_sources_for_pending():
    assert sources_for(ParseStatus.PENDING) == {ParseStatus.RENDER_FAILED, ParseStatus.EXTRACT_FAILED}
