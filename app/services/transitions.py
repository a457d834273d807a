from __future__ import annotations

"""
Finite state machines for content items.

Each table maps a state to the set of states it may move to. Tables are
checked when this module is imported: every enum member must appear as a key
and every target must be a member, so a new status cannot be added without
deciding its transitions.

- Processing: pending → processing → completed | failed. A completed or failed
  item may re-enter `processing` only through an explicit variant retry.
- Lifecycle: active → soft_deleted → hard_deleted (terminal); soft_deleted →
  active is the restore path, allowed only inside the grace period (enforced
  by the lifecycle manager, not by the table).
"""

from enum import Enum
from typing import Dict, FrozenSet, Type, TypeVar

from app.core.exceptions import InvalidTransition
from app.schemas.enums import LifecycleStatus, ProcessingStatus, VariantStatus

E = TypeVar("E", bound=Enum)

PROCESSING_TRANSITIONS: Dict[ProcessingStatus, FrozenSet[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    # retry only
    ProcessingStatus.COMPLETED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PROCESSING}),
}

LIFECYCLE_TRANSITIONS: Dict[LifecycleStatus, FrozenSet[LifecycleStatus]] = {
    LifecycleStatus.ACTIVE: frozenset({LifecycleStatus.SOFT_DELETED}),
    LifecycleStatus.SOFT_DELETED: frozenset({LifecycleStatus.ACTIVE, LifecycleStatus.HARD_DELETED}),
    LifecycleStatus.HARD_DELETED: frozenset(),
}

VARIANT_TRANSITIONS: Dict[VariantStatus, FrozenSet[VariantStatus]] = {
    VariantStatus.PENDING: frozenset({VariantStatus.COMPLETED, VariantStatus.FAILED}),
    VariantStatus.COMPLETED: frozenset(),
    VariantStatus.FAILED: frozenset({VariantStatus.PENDING}),
}


def _check_table(name: str, enum_cls: Type[E], table: Dict[E, FrozenSet[E]]) -> None:
    missing = set(enum_cls) - set(table)
    if missing:
        raise RuntimeError(f"{name} transition table missing states: {sorted(m.value for m in missing)}")
    for src, targets in table.items():
        for dst in targets:
            if not isinstance(dst, enum_cls):
                raise RuntimeError(f"{name} transition {src!r} → {dst!r} targets a foreign state")
            if dst == src:
                raise RuntimeError(f"{name} transition {src.value} → itself is not a transition")


_check_table("processing", ProcessingStatus, PROCESSING_TRANSITIONS)
_check_table("lifecycle", LifecycleStatus, LIFECYCLE_TRANSITIONS)
_check_table("variant", VariantStatus, VARIANT_TRANSITIONS)


def can_transition(table: Dict[E, FrozenSet[E]], current: E, target: E) -> bool:
    return target in table.get(current, frozenset())


def ensure_transition(machine: str, table: Dict[E, FrozenSet[E]], current: E, target: E) -> E:
    """Return `target` if allowed, else raise `InvalidTransition`."""
    if not can_transition(table, current, target):
        raise InvalidTransition(machine, current.value, target.value)
    return target


__all__ = [
    "PROCESSING_TRANSITIONS",
    "LIFECYCLE_TRANSITIONS",
    "VARIANT_TRANSITIONS",
    "can_transition",
    "ensure_transition",
]
