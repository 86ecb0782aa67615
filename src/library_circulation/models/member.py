"""
Member model for the library circulation system.

A member is a person who can borrow books. Only members whose status is
Active, and who have not been soft-deleted, may start a loan or place a
reservation.
"""

from datetime import date, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from .enums import MembershipStatus


def check_email_length(value: str) -> str:
    if len(value) > 100:
        raise ValueError("Email must be at most 100 characters")
    return value


EmailAddress = Annotated[EmailStr, AfterValidator(check_email_length)]

PhoneNumber = Annotated[str, Field(max_length=20, pattern=r"^\+?[\d\s\-\(\)\.]+$")]


class Member(BaseModel):
    """
    Represents a library member.

    Loans, reservations and fines reference the member by ``member_id``;
    the member record outlives them all because deletion is soft.
    """

    member_id: int = Field(..., description="Unique identifier for the member", ge=1)

    first_name: str = Field(..., min_length=1, max_length=50, examples=["Jane"])

    last_name: str = Field(..., min_length=1, max_length=50, examples=["Doe"])

    email: EmailAddress = Field(
        ...,
        description="Email address for member notifications",
        examples=["jane.doe@example.com"],
    )

    phone: PhoneNumber | None = Field(None, examples=["555-123-4567"])

    address: str | None = None

    date_of_birth: date | None = None

    membership_date: date = Field(..., description="Date when the member enrolled")

    membership_status: MembershipStatus = Field(
        default=MembershipStatus.ACTIVE,
        description="Current status of the membership",
    )

    deleted_at: datetime | None = Field(
        None,
        description="When the member was soft-deleted; None for live accounts",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        """Check if the member may borrow and reserve."""
        return self.deleted_at is None and self.membership_status == MembershipStatus.ACTIVE

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "member_id": 1,
                "first_name": "Jane",
                "last_name": "Doe",
                "email": "jane.doe@example.com",
                "membership_date": "2024-01-15",
                "membership_status": "Active",
            }
        },
    )
