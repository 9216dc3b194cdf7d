"""Reservation status state machine

The status set is closed (ReservationStatus) and every permitted change is
listed in TRANSITIONS together with the trigger allowed to fire it. Anything
not listed is rejected with InvalidTransition.
"""
from typing import Dict, FrozenSet, Optional, Tuple

from domain.enums import ReservationStatus, TransitionTrigger
from domain.exceptions import InvalidTransition

S = ReservationStatus
T = TransitionTrigger

TRANSITIONS: Dict[Tuple[ReservationStatus, ReservationStatus], FrozenSet[TransitionTrigger]] = {
    (S.PENDING, S.CONFIRMED): frozenset({T.STATUS_UPDATE}),
    (S.PENDING, S.CHECKED_IN): frozenset({T.STATUS_UPDATE}),
    (S.CONFIRMED, S.CHECKED_IN): frozenset({T.STATUS_UPDATE}),
    (S.PENDING, S.CANCELLED): frozenset({T.STATUS_UPDATE, T.RELEASE}),
    (S.CONFIRMED, S.CANCELLED): frozenset({T.STATUS_UPDATE, T.RELEASE}),
    (S.CHECKED_IN, S.CANCELLED): frozenset({T.STATUS_UPDATE}),
    (S.CONFIRMED, S.CHECKED_OUT): frozenset({T.STATUS_UPDATE}),
    (S.CHECKED_IN, S.CHECKED_OUT): frozenset({T.STATUS_UPDATE}),
    (S.PENDING, S.AT_RISK): frozenset({T.RISK_SWEEP}),
    (S.CONFIRMED, S.AT_RISK): frozenset({T.RISK_SWEEP}),
    (S.AT_RISK, S.PENDING): frozenset({T.EXTENSION}),
    (S.AT_RISK, S.CONFIRMED): frozenset({T.EXTENSION}),
    (S.AT_RISK, S.CANCELLED): frozenset({T.RELEASE}),
}

TERMINAL_STATUSES = frozenset({S.CHECKED_OUT, S.CANCELLED})

# Statuses that hold a room slot (and the selected bed)
SLOT_HOLDING_STATUSES = frozenset({S.CONFIRMED, S.CHECKED_IN})

# Statuses the risk sweeper and the extension workflow operate on
ACTIVE_STATUSES = frozenset({S.PENDING, S.CONFIRMED})


def is_transition_allowed(
    old: ReservationStatus,
    new: ReservationStatus,
    trigger: TransitionTrigger,
) -> bool:
    if old == new:
        return True
    return trigger in TRANSITIONS.get((old, new), frozenset())


def ensure_transition(
    old: ReservationStatus,
    new: ReservationStatus,
    trigger: TransitionTrigger,
) -> None:
    """Raise InvalidTransition unless `trigger` may move `old` to `new`"""
    if is_transition_allowed(old, new, trigger):
        return

    allowed = TRANSITIONS.get((old, new))
    if allowed:
        raise InvalidTransition(
            f"Transition {old.value} -> {new.value} cannot be made by {trigger.value}",
            details={"from": old.value, "to": new.value, "trigger": trigger.value},
        )
    raise InvalidTransition(
        f"Transition {old.value} -> {new.value} is not permitted",
        details={"from": old.value, "to": new.value, "trigger": trigger.value},
    )


def holds_slot(status: Optional[ReservationStatus]) -> bool:
    """Whether a reservation in `status` counts against room occupancy"""
    return status is not None and status in SLOT_HOLDING_STATUSES


def occupancy_delta(held_before: bool, held_after: bool) -> int:
    """+1 take a slot, -1 free it, 0 nothing to do"""
    return int(held_after) - int(held_before)


def allowed_targets(old: ReservationStatus, trigger: TransitionTrigger) -> FrozenSet[ReservationStatus]:
    return frozenset(
        new for (src, new), triggers in TRANSITIONS.items()
        if src == old and trigger in triggers
    )
