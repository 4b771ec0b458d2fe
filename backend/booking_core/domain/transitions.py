"""
Booking status transition table.

    pending -> accepted -> started -> completed
    pending|accepted -> cancellation_requested -> cancelled
    pending|accepted -> cancelled                 (driver/admin direct)

`completed` and `cancelled` are terminal. `cancellation_requested` is only left
through the cancellation workflow (approve or reject).
"""

from typing import Optional

from booking_core.domain.enums import ActorModel, BookingStatus, TERMINAL_STATUSES

S = BookingStatus

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    S.PENDING: frozenset({S.ACCEPTED, S.CANCELLATION_REQUESTED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.STARTED, S.CANCELLATION_REQUESTED, S.CANCELLED}),
    S.STARTED: frozenset({S.COMPLETED}),
    S.CANCELLATION_REQUESTED: frozenset({S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Edges each role may take through the status endpoint. Admins may take any
# table edge; users only reach cancellation_requested via the workflow.
ROLE_TRANSITIONS: dict[ActorModel, frozenset[tuple[BookingStatus, BookingStatus]]] = {
    ActorModel.USER: frozenset({
        (S.PENDING, S.CANCELLATION_REQUESTED),
        (S.ACCEPTED, S.CANCELLATION_REQUESTED),
    }),
    ActorModel.DRIVER: frozenset({
        (S.PENDING, S.ACCEPTED),
        (S.ACCEPTED, S.STARTED),
        (S.STARTED, S.COMPLETED),
        (S.PENDING, S.CANCELLED),
        (S.ACCEPTED, S.CANCELLED),
    }),
    ActorModel.ADMIN: frozenset(
        (src, dst) for src, targets in ALLOWED_TRANSITIONS.items() for dst in targets
    ),
}


def is_allowed(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def role_may(actor_model: ActorModel, current: BookingStatus, target: BookingStatus) -> bool:
    return (current, target) in ROLE_TRANSITIONS[actor_model]


def is_overridable(current: BookingStatus, target: BookingStatus) -> bool:
    """Edges an admin may force outside the table with an explicit reason."""
    if current in TERMINAL_STATUSES or current == target:
        return False
    if S.CANCELLATION_REQUESTED in (current, target):
        return False
    return True


# History notes share one column; an override prefixes its marker to the caller's notes.
NOTES_MAX_LENGTH = 1000
OVERRIDE_NOTE = "admin override"
OVERRIDE_NOTES_MAX_LENGTH = NOTES_MAX_LENGTH - len(OVERRIDE_NOTE) - 2


def override_notes(notes: Optional[str]) -> str:
    return f"{OVERRIDE_NOTE}; {notes}" if notes else OVERRIDE_NOTE
