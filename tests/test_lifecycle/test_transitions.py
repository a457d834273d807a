# tests/test_lifecycle/test_transitions.py

import pytest

from app.core.exceptions import InvalidTransition
from app.schemas.enums import LifecycleStatus, ProcessingStatus, VariantStatus
from app.services.transitions import (
    LIFECYCLE_TRANSITIONS,
    PROCESSING_TRANSITIONS,
    VARIANT_TRANSITIONS,
    can_transition,
    ensure_transition,
)


@pytest.mark.parametrize(
    "current,target",
    [
        (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING),
        (ProcessingStatus.PROCESSING, ProcessingStatus.FAILED),
        (ProcessingStatus.FAILED, ProcessingStatus.PROCESSING),
    ],
)
def test_processing_moves(current, target):
    assert ensure_transition("processing", PROCESSING_TRANSITIONS, current, target) is target


def test_pending_cannot_jump_to_completed():
    with pytest.raises(InvalidTransition) as ei:
        ensure_transition("processing", PROCESSING_TRANSITIONS, ProcessingStatus.PENDING, ProcessingStatus.COMPLETED)
    assert ei.value.status_code == 409
    assert ei.value.code == "invalid_transition"


def test_hard_deleted_is_terminal():
    for target in LifecycleStatus:
        assert not can_transition(LIFECYCLE_TRANSITIONS, LifecycleStatus.HARD_DELETED, target)


def test_active_must_be_soft_deleted_first():
    assert not can_transition(LIFECYCLE_TRANSITIONS, LifecycleStatus.ACTIVE, LifecycleStatus.HARD_DELETED)
    assert can_transition(LIFECYCLE_TRANSITIONS, LifecycleStatus.SOFT_DELETED, LifecycleStatus.ACTIVE)


def test_completed_variant_is_final():
    assert VARIANT_TRANSITIONS[VariantStatus.COMPLETED] == frozenset()
    assert can_transition(VARIANT_TRANSITIONS, VariantStatus.FAILED, VariantStatus.PENDING)
