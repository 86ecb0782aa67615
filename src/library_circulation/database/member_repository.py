"""
Member repository for the library circulation system.

This repository manages library members:

1. **Enrollment**: create members with a validated, unique email
2. **Status**: staff suspend, reactivate or expire memberships
3. **Soft delete**: members leave, their loan and fine history stays
4. **Expiry sweep**: memberships older than the configured term expire
5. **Eligibility**: whether a member may borrow right now
"""

import enum
import logging
from datetime import date, datetime, timedelta

from pydantic import BaseModel, Field
from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.orm import Session

from ..config import LibraryConfig, get_config
from ..errors import ConcurrencyError, DuplicateError, InvalidState, NotFoundError
from ..models.circulation import SweepResult
from ..models.enums import (
    CopyStatus,
    MembershipStatus,
    ReservationStatus,
    ensure_copy_transition,
    ensure_reservation_transition,
)
from ..models.member import EmailAddress, Member, PhoneNumber
from ..observability.decorators import trace_repository_operation
from ..observability.metrics import record_sweep
from .audit import set_audit_actor
from .fine_repository import FineRepository
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import BookCopy as CopyDB
from .schema import Loan as LoanDB
from .schema import Member as MemberDB
from .schema import Reservation as ReservationDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class MemberCreateSchema(BaseModel):
    """Schema for enrolling a new member."""

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailAddress
    phone: PhoneNumber | None = None
    address: str | None = None
    date_of_birth: date | None = None
    membership_date: date | None = None  # Defaults to today


class MemberUpdateSchema(BaseModel):
    """Schema for updating contact details - all fields optional."""

    first_name: str | None = Field(None, min_length=1, max_length=50)
    last_name: str | None = Field(None, min_length=1, max_length=50)
    email: EmailAddress | None = None
    phone: PhoneNumber | None = None
    address: str | None = None
    date_of_birth: date | None = None


class MemberSearchParams(BaseModel):
    """Search parameters for finding members."""

    query: str | None = None  # Name or email contains
    status: MembershipStatus | None = None
    include_deleted: bool = False


class MemberSortOptions(str, enum.Enum):
    """Sorting options for member queries."""

    LAST_NAME = "last_name"
    EMAIL = "email"
    MEMBERSHIP_DATE = "membership_date"


class MemberRepository(BaseRepository[MemberDB, MemberCreateSchema, MemberUpdateSchema, Member]):
    """
    Repository for member data access.

    Members are never physically deleted; ``delete`` is a soft delete.
    """

    def __init__(
        self,
        session: Session,
        staff_id: int | None = None,
        config: LibraryConfig | None = None,
    ):
        super().__init__(session)
        self.config = config or get_config()
        if staff_id is not None:
            set_audit_actor(session, staff_id)

    @property
    def model_class(self):
        return MemberDB

    @property
    def response_schema(self):
        return Member

    def create(self, data: MemberCreateSchema) -> Member:
        """
        Enroll a new member.

        Raises:
            DuplicateError: If the email is already registered
        """
        if self.get_by_email(data.email, include_deleted=True) is not None:
            raise DuplicateError(f"Member with email {data.email} already exists")

        values = data.model_dump()
        values["membership_date"] = data.membership_date or date.today()
        db_member = MemberDB(**values, membership_status=MembershipStatus.ACTIVE)
        self.session.add(db_member)
        safe_commit(self.session, "create member")
        self.session.refresh(db_member)
        logger.info("Member %s enrolled", db_member.member_id)
        return self._to_response_model(db_member)

    def get_by_email(self, email: str, include_deleted: bool = False) -> Member | None:
        query = select(MemberDB).where(func.lower(MemberDB.email) == email.lower())
        if not include_deleted:
            query = query.where(MemberDB.deleted_at.is_(None))
        db_member = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get member by email",
        )
        return self._to_response_model(db_member) if db_member else None

    def search(
        self,
        search_params: MemberSearchParams,
        pagination: PaginationParams | None = None,
        sort_by: MemberSortOptions = MemberSortOptions.LAST_NAME,
        sort_desc: bool = False,
    ) -> PaginatedResponse[Member]:
        """
        Search members by name or email and status.

        Soft-deleted members are excluded unless asked for.
        """
        filters = []
        if search_params.query:
            term = f"%{search_params.query}%"
            filters.append(
                or_(
                    MemberDB.first_name.ilike(term),
                    MemberDB.last_name.ilike(term),
                    MemberDB.email.ilike(term),
                )
            )
        if search_params.status:
            filters.append(MemberDB.membership_status == search_params.status)
        if not search_params.include_deleted:
            filters.append(MemberDB.deleted_at.is_(None))

        sort_column = getattr(MemberDB, sort_by.value)
        order = sort_column.desc() if sort_desc else sort_column.asc()

        pagination = pagination or PaginationParams()
        pagination.validate_params()

        total = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count()).select_from(MemberDB).where(*filters)
            ).scalar(),
            "Failed to count members",
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(MemberDB)
                .where(*filters)
                .order_by(order, MemberDB.member_id)
                .offset(pagination.offset)
                .limit(pagination.page_size)
            )
            .scalars()
            .all(),
            "Failed to search members",
        )
        items = [self._to_response_model(m) for m in rows]
        return PaginatedResponse.build(items, total or 0, pagination)

    def set_status(self, member_id: int, status: MembershipStatus) -> Member:
        """
        Change a member's status (staff action).

        Raises:
            NotFoundError: If the member does not exist
            InvalidState: If the member has been soft-deleted
        """
        db_member = self._require(member_id)
        if db_member.deleted_at is not None:
            raise InvalidState(f"Member {member_id} has been removed")

        db_member.membership_status = MembershipStatus(status)
        safe_commit(self.session, "set member status")
        logger.info("Member %s is now %s", member_id, MembershipStatus(status).value)
        return self._to_response_model(db_member)

    def has_open_loans(self, member_id: int) -> bool:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    exists().where(LoanDB.member_id == member_id, LoanDB.return_date.is_(None))
                )
            ).scalar(),
            "Failed to check open loans",
        )

    def soft_delete(self, member_id: int) -> Member:
        """
        Remove a member while keeping their history.

        The member is suspended and stamped with ``deleted_at``; loans, fines,
        reservations and audit entries keep pointing at the row. Pending
        reservations are cancelled, and a copy held for the member's pickup
        goes back to Available, in the same transaction.

        Raises:
            NotFoundError: If the member does not exist
            InvalidState: If the member still has books out or was already removed
        """
        db_member = self._require(member_id)
        if db_member.deleted_at is not None:
            raise InvalidState(f"Member {member_id} was already removed")
        if self.has_open_loans(member_id):
            raise InvalidState(f"Member {member_id} still has books checked out")

        self._withdraw_reservations(member_id)
        db_member.deleted_at = datetime.now()
        db_member.membership_status = MembershipStatus.SUSPENDED
        safe_commit(self.session, "soft delete member")
        logger.info("Member %s removed", member_id)
        return self._to_response_model(db_member)

    def _withdraw_reservations(self, member_id: int) -> None:
        """Cancel pending reservations and expire unclaimed pickups of a member."""
        open_reservations = safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB)
                .where(
                    ReservationDB.member_id == member_id,
                    or_(
                        ReservationDB.status == ReservationStatus.PENDING,
                        and_(
                            ReservationDB.status == ReservationStatus.FULFILLED,
                            ReservationDB.loan_id.is_(None),
                        ),
                    ),
                )
                .with_for_update()
            )
            .scalars()
            .all(),
            "Failed to read member reservations",
        )
        for reservation in open_reservations:
            if reservation.status == ReservationStatus.PENDING:
                ensure_reservation_transition(reservation.status, ReservationStatus.CANCELLED)
                reservation.status = ReservationStatus.CANCELLED
                continue

            ensure_reservation_transition(reservation.status, ReservationStatus.EXPIRED)
            reservation.status = ReservationStatus.EXPIRED
            if reservation.copy_id is not None:
                copy = self.session.get(CopyDB, reservation.copy_id)
                if copy is not None and copy.status == CopyStatus.RESERVED:
                    ensure_copy_transition(copy.status, CopyStatus.AVAILABLE)
                    copy.status = CopyStatus.AVAILABLE
                    logger.info("Copy %s released from removed member %s", copy.copy_id, member_id)

    def delete(self, id: int) -> bool:
        """Soft-delete a member; returns False if the member does not exist."""
        if self._get_db_obj(id) is None:
            return False
        self.soft_delete(id)
        return True

    def expire_memberships(self, cutoff: date | None = None) -> SweepResult:
        """
        Expire Active memberships older than the configured term.

        Each member is updated in its own transaction.
        """
        today = cutoff or date.today()
        enrolled_before = today - timedelta(days=self.config.membership_term_days)
        result = SweepResult()

        with trace_repository_operation("member", "expire_memberships", "members"):
            member_ids = safe_query(
                self.session,
                lambda s: s.execute(
                    select(MemberDB.member_id)
                    .where(
                        MemberDB.membership_status == MembershipStatus.ACTIVE,
                        MemberDB.deleted_at.is_(None),
                        MemberDB.membership_date < enrolled_before,
                    )
                    .order_by(MemberDB.member_id)
                )
                .scalars()
                .all(),
                "Failed to find expiring memberships",
            )

            for member_id in member_ids:
                db_member = self.session.get(MemberDB, member_id, populate_existing=True)
                if db_member is None or db_member.membership_status != MembershipStatus.ACTIVE:
                    result.skipped.append(member_id)
                    continue
                db_member.membership_status = MembershipStatus.EXPIRED
                try:
                    safe_commit(
                        self.session, "expire membership", unique_violation=ConcurrencyError
                    )
                except ConcurrencyError:
                    logger.warning("Member %s changed during sweep; skipped", member_id)
                    result.skipped.append(member_id)
                    continue
                result.processed.append(member_id)

        logger.info("Membership sweep: %d expired", result.count)
        record_sweep("expire_memberships", result.count, len(result.skipped))
        return result

    def is_eligible(self, member_id: int) -> bool:
        """
        Whether the member may check out right now: Active, not removed, and
        within the outstanding fine threshold.

        Raises:
            NotFoundError: If the member does not exist
        """
        db_member = self._get_db_obj(member_id)
        if db_member is None:
            raise NotFoundError(f"Member {member_id} not found")
        if not db_member.is_active:
            return False
        owed = FineRepository(self.session, config=self.config).outstanding_total(member_id)
        return owed <= self.config.fine_threshold
