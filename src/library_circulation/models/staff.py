"""Staff model - library employees who act on circulation records."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .member import EmailAddress, PhoneNumber


class Staff(BaseModel):
    """Represents a library employee."""

    staff_id: int = Field(..., ge=1)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailAddress
    phone: PhoneNumber | None = None
    address: str | None = None
    position: str = Field(..., min_length=1, max_length=50, examples=["Librarian"])
    hire_date: date
    salary: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    supervisor_id: int | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    model_config = ConfigDict(from_attributes=True)
