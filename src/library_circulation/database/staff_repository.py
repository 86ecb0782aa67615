"""
Staff repository for the library circulation system.

Staff members are the actors named on audit entries, so they are looked up
by every mutating circulation call.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field
from sqlalchemy import select

from ..errors import DuplicateError, NotFoundError
from ..models.member import EmailAddress, PhoneNumber
from ..models.staff import Staff
from .repository import BaseRepository
from .schema import Staff as StaffDB
from .session import safe_query


class StaffCreateSchema(BaseModel):
    """Schema for hiring a staff member."""

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailAddress
    phone: PhoneNumber | None = None
    address: str | None = None
    position: str = Field(..., min_length=1, max_length=50)
    hire_date: date
    salary: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    supervisor_id: int | None = None


class StaffUpdateSchema(BaseModel):
    """Schema for updating a staff member - all fields optional."""

    phone: PhoneNumber | None = None
    address: str | None = None
    position: str | None = Field(None, min_length=1, max_length=50)
    salary: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    supervisor_id: int | None = None


class StaffRepository(BaseRepository[StaffDB, StaffCreateSchema, StaffUpdateSchema, Staff]):
    """Repository for staff data access."""

    @property
    def model_class(self):
        return StaffDB

    @property
    def response_schema(self):
        return Staff

    def create(self, data: StaffCreateSchema) -> Staff:
        """
        Create a staff member.

        Raises:
            DuplicateError: If the email is already in use
            NotFoundError: If the supervisor does not exist
        """
        existing = safe_query(
            self.session,
            lambda s: s.execute(
                select(StaffDB.staff_id).where(StaffDB.email == data.email)
            ).scalar_one_or_none(),
            "Failed to check for duplicate staff email",
        )
        if existing is not None:
            raise DuplicateError(f"Staff with email {data.email} already exists")
        if data.supervisor_id is not None and not self.exists(data.supervisor_id):
            raise NotFoundError(f"Supervisor {data.supervisor_id} not found")
        return super().create(data)

    def list_reports(self, supervisor_id: int) -> list[Staff]:
        """Staff members reporting directly to a supervisor."""
        self._require(supervisor_id)
        reports = safe_query(
            self.session,
            lambda s: s.execute(
                select(StaffDB)
                .where(StaffDB.supervisor_id == supervisor_id)
                .order_by(StaffDB.last_name, StaffDB.first_name)
            )
            .scalars()
            .all(),
            "Failed to list reports",
        )
        return [self._to_response_model(r) for r in reports]
