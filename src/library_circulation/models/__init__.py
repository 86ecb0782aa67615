"""
Library circulation models.

Pydantic models for every entity the repositories return:

- Member, Staff: people who borrow and people who act on records
- Author, Publisher, Book, BookCopy: the catalog
- Loan, Reservation: circulation records
- Fine: penalties and the late fee calculation
- AuditEntry: recorded changes

Status domains and their transition tables live in ``enums``.
"""

from .audit import AuditEntry
from .author import Author, Publisher
from .book import Book, BookAuthorLink, BookCopy
from .circulation import Loan, Reservation, SweepResult
from .enums import (
    AuditAction,
    ContributionType,
    CopyCondition,
    CopyStatus,
    FineStatus,
    MembershipStatus,
    ReservationStatus,
)
from .fine import Fine, calculate_late_fee
from .member import Member
from .staff import Staff

__all__ = [
    "AuditAction",
    "AuditEntry",
    "Author",
    "Book",
    "BookAuthorLink",
    "BookCopy",
    "ContributionType",
    "CopyCondition",
    "CopyStatus",
    "Fine",
    "FineStatus",
    "Loan",
    "Member",
    "MembershipStatus",
    "Publisher",
    "Reservation",
    "ReservationStatus",
    "Staff",
    "SweepResult",
    "calculate_late_fee",
]
