"""
Fine model and late fee calculation.

Late fees are a pure function of the due date, the return time, the daily
rate and the grace period, so assessing the same loan twice always yields
the same amount.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import FineStatus

CENTS = Decimal("0.01")


def calculate_late_fee(
    due_date: date,
    return_date: datetime,
    daily_rate: Decimal,
    grace_period_days: int = 0,
) -> Decimal:
    """
    Calculate the late fee for a return.

    Args:
        due_date: Date the copy was due
        return_date: When the copy came back
        daily_rate: Fee per day late
        grace_period_days: Days past due that are not charged

    Returns:
        Non-negative fee rounded to cents
    """
    days_late = (return_date.date() - due_date).days
    chargeable = max(0, days_late - grace_period_days)
    return (Decimal(daily_rate) * chargeable).quantize(CENTS, rounding=ROUND_HALF_UP)


class Fine(BaseModel):
    """Represents a monetary penalty owed by a member."""

    fine_id: int = Field(..., ge=1)

    member_id: int = Field(..., ge=1)

    loan_id: int | None = None

    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)

    issue_date: date

    payment_date: date | None = None

    status: FineStatus = FineStatus.OUTSTANDING

    reason: str = Field(..., min_length=1, max_length=255, examples=["late return"])

    @property
    def is_outstanding(self) -> bool:
        return self.status == FineStatus.OUTSTANDING

    model_config = ConfigDict(from_attributes=True)
