"""
Circulation models for the library circulation system.

- Loan: a member borrowing one copy over [checkout_date, due_date]
- Reservation: a member's claim on a book, served first come first served
- SweepResult: outcome of a periodic sweep over reservations

The date rules here are the same ones the loans and reservations tables
enforce with CHECK constraints, so invalid records are rejected before any
database round trip.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import ReservationStatus


class Loan(BaseModel):
    """
    Represents a loan of one copy to one member.

    A loan is open until ``return_date`` is set.
    """

    loan_id: int = Field(..., ge=1)

    copy_id: int = Field(..., ge=1)

    member_id: int = Field(..., ge=1)

    checkout_date: datetime = Field(
        ..., description="Date and time when the copy was checked out"
    )

    due_date: date = Field(..., description="Date when the copy should be returned")

    return_date: datetime | None = Field(
        None, description="Actual date and time when the copy was returned"
    )

    late_fee: Decimal = Field(
        default=Decimal("0.00"),
        description="Late fee assessed on return",
        ge=0,
        max_digits=10,
        decimal_places=2,
    )

    renewal_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_dates(self) -> "Loan":
        """Validate date relationships."""
        if self.due_date <= self.checkout_date.date():
            raise ValueError("Due date must be after checkout date")

        if self.return_date and self.return_date < self.checkout_date:
            raise ValueError("Return date cannot be before checkout date")

        return self

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    @property
    def loan_period_days(self) -> int:
        """Calculate the loan period in days."""
        return (self.due_date - self.checkout_date.date()).days

    def days_late(self, as_of: date | None = None) -> int:
        """
        Days past the due date at return, or at ``as_of`` for open loans.

        Args:
            as_of: Reference date for open loans (default today)
        """
        if self.return_date is not None:
            end = self.return_date.date()
        else:
            end = as_of or date.today()
        return max(0, (end - self.due_date).days)

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "loan_id": 1,
                "copy_id": 7,
                "member_id": 3,
                "checkout_date": "2024-03-01T10:30:00",
                "due_date": "2024-03-15",
                "return_date": None,
                "late_fee": "0.00",
            }
        },
    )


class Reservation(BaseModel):
    """
    Represents a reservation on a book.

    Pending reservations wait for a copy. Fulfilling one binds a copy
    (``copy_id``); the member then claims it by checking it out, which
    records the claiming ``loan_id``.
    """

    reservation_id: int = Field(..., ge=1)

    book_id: int = Field(..., ge=1)

    member_id: int = Field(..., ge=1)

    reservation_date: datetime = Field(
        ..., description="Date and time when the reservation was made"
    )

    expiration_date: datetime = Field(
        ..., description="When a still-pending reservation lapses"
    )

    status: ReservationStatus = Field(default=ReservationStatus.PENDING)

    copy_id: int | None = Field(None, description="Copy bound on fulfillment")

    fulfilled_date: datetime | None = Field(None, description="When a copy was bound")

    loan_id: int | None = Field(None, description="Loan that claimed the bound copy")

    @model_validator(mode="after")
    def validate_dates(self) -> "Reservation":
        """Ensure the reservation expires after it was made."""
        if self.expiration_date <= self.reservation_date:
            raise ValueError("Expiration date must be after reservation date")
        return self

    @property
    def is_awaiting_pickup(self) -> bool:
        return self.status == ReservationStatus.FULFILLED and self.loan_id is None

    model_config = ConfigDict(from_attributes=True)


class SweepResult(BaseModel):
    """Outcome of a periodic sweep; ids are listed per outcome."""

    processed: list[int] = Field(default_factory=list)
    released_copies: list[int] = Field(default_factory=list)
    skipped: list[int] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.processed)
