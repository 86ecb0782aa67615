"""
Closed status domains and their allowed transitions.

The string values are the exact enumeration literals stored in the
database. Transition tables are consulted before every status change so an
invalid state can never be written.
"""

from enum import Enum

from ..errors import InvalidState


class MembershipStatus(str, Enum):
    """Membership status of a library member."""

    ACTIVE = "Active"
    EXPIRED = "Expired"
    SUSPENDED = "Suspended"


class ContributionType(str, Enum):
    """Role of an author on a book."""

    PRIMARY = "Primary"
    SECONDARY = "Secondary"
    EDITOR = "Editor"
    TRANSLATOR = "Translator"


class CopyCondition(str, Enum):
    """Physical condition of a copy."""

    NEW = "New"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    LOST = "Lost"


class CopyStatus(str, Enum):
    """Lending status of a physical copy."""

    AVAILABLE = "Available"
    CHECKED_OUT = "Checked Out"
    RESERVED = "Reserved"
    LOST = "Lost"
    DAMAGED = "Damaged"


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    PENDING = "Pending"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class FineStatus(str, Enum):
    """Status of a fine."""

    OUTSTANDING = "Outstanding"
    PAID = "Paid"
    WAIVED = "Waived"


class AuditAction(str, Enum):
    """Kind of change recorded in the audit log."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


_STAFF_HOLDS = frozenset({CopyStatus.LOST, CopyStatus.DAMAGED})

COPY_TRANSITIONS: dict[CopyStatus, frozenset[CopyStatus]] = {
    CopyStatus.AVAILABLE: frozenset({CopyStatus.CHECKED_OUT, CopyStatus.RESERVED}) | _STAFF_HOLDS,
    CopyStatus.CHECKED_OUT: frozenset({CopyStatus.AVAILABLE, CopyStatus.RESERVED}) | _STAFF_HOLDS,
    CopyStatus.RESERVED: frozenset({CopyStatus.CHECKED_OUT, CopyStatus.AVAILABLE}) | _STAFF_HOLDS,
    CopyStatus.LOST: frozenset({CopyStatus.AVAILABLE, CopyStatus.DAMAGED}),
    CopyStatus.DAMAGED: frozenset({CopyStatus.AVAILABLE, CopyStatus.LOST}),
}

RESERVATION_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.FULFILLED, ReservationStatus.CANCELLED, ReservationStatus.EXPIRED}
    ),
    ReservationStatus.FULFILLED: frozenset({ReservationStatus.EXPIRED}),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
}

FINE_TRANSITIONS: dict[FineStatus, frozenset[FineStatus]] = {
    FineStatus.OUTSTANDING: frozenset({FineStatus.PAID, FineStatus.WAIVED}),
    FineStatus.PAID: frozenset(),
    FineStatus.WAIVED: frozenset(),
}


def ensure_copy_transition(current: CopyStatus, target: CopyStatus) -> None:
    """Raise InvalidState unless a copy may move from current to target."""
    current = CopyStatus(current)
    if target not in COPY_TRANSITIONS[current]:
        raise InvalidState(f"Copy cannot move from '{current.value}' to '{target.value}'")


def ensure_reservation_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    """Raise InvalidState unless a reservation may move from current to target."""
    current = ReservationStatus(current)
    if target not in RESERVATION_TRANSITIONS[current]:
        raise InvalidState(
            f"Reservation cannot move from '{current.value}' to '{target.value}'"
        )


def ensure_fine_transition(current: FineStatus, target: FineStatus) -> None:
    """Raise InvalidState unless a fine may move from current to target."""
    current = FineStatus(current)
    if target not in FINE_TRANSITIONS[current]:
        raise InvalidState(f"Fine cannot move from '{current.value}' to '{target.value}'")
