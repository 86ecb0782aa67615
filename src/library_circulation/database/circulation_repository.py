"""
Circulation repository for the library circulation system.

This repository is the lending state machine:

1. **Checkouts**: Available (or claimed Reserved) copy -> Checked Out, new loan
2. **Returns**: close the loan, hand the copy to the oldest pending
   reservation or back to the shelf, assess the late fee
3. **Reservations**: FIFO queue per book; cancel while pending
4. **Renewals**: extend an open loan a bounded number of times
5. **Sweeps**: expire stale reservations and bind idle copies to the queue
6. **Staff holds**: mark copies Lost or Damaged and restore them

Every operation is one transaction that commits on success and rolls back
completely on failure. Rows are read ``FOR UPDATE`` where the backend supports
it and every write is a version-checked compare-and-swap, so of two
concurrent checkouts of one copy exactly one succeeds. Sweeps commit per
record so they never hold more than one row at a time.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from ..config import LibraryConfig, get_config
from ..errors import (
    ConcurrencyError,
    CopyUnavailable,
    DuplicateReservation,
    InvalidState,
    LoanAlreadyClosed,
    MemberIneligible,
    NotFoundError,
    ValidationError,
)
from ..models.circulation import Loan, Reservation, SweepResult
from ..models.enums import (
    CopyStatus,
    MembershipStatus,
    ReservationStatus,
    ensure_copy_transition,
    ensure_reservation_transition,
)
from ..observability.decorators import trace_operation, trace_repository_operation
from ..observability.metrics import record_circulation_event, record_fine_assessed, record_sweep
from .audit import set_audit_actor
from .fine_repository import FineRepository
from .schema import Book as BookDB
from .schema import BookCopy as CopyDB
from .schema import Loan as LoanDB
from .schema import Member as MemberDB
from .schema import Reservation as ReservationDB
from .session import retry_on_concurrency, safe_commit, safe_flush, safe_query

logger = logging.getLogger(__name__)

STAFF_HOLDS = frozenset({CopyStatus.LOST, CopyStatus.DAMAGED})


class CirculationRepository:
    """
    Repository for circulation operations.

    Constructed per unit of work with the acting staff member, who is named
    on every audit entry the operations produce.
    """

    def __init__(self, session: Session, staff_id: int, config: LibraryConfig | None = None):
        self.session = session
        self.staff_id = staff_id
        self.config = config or get_config()
        self.fines = FineRepository(session, config=self.config)
        set_audit_actor(session, staff_id)

    # Row access

    def _lock(self, model, pk_column, pk: int, label: str):
        row = safe_query(
            self.session,
            lambda s: s.execute(
                select(model)
                .where(pk_column == pk)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none(),
            f"Failed to get {label}",
        )
        if row is None:
            raise NotFoundError(f"{label.capitalize()} {pk} not found")
        return row

    def _lock_copy(self, copy_id: int) -> CopyDB:
        return self._lock(CopyDB, CopyDB.copy_id, copy_id, "copy")

    def _lock_loan(self, loan_id: int) -> LoanDB:
        return self._lock(LoanDB, LoanDB.loan_id, loan_id, "loan")

    def _lock_reservation(self, reservation_id: int) -> ReservationDB:
        return self._lock(
            ReservationDB, ReservationDB.reservation_id, reservation_id, "reservation"
        )

    def _eligible_member(self, member_id: int) -> MemberDB:
        member = safe_query(
            self.session, lambda s: s.get(MemberDB, member_id), "Failed to get member"
        )
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        if member.deleted_at is not None:
            raise MemberIneligible(f"Member {member_id} has been removed")
        if not member.is_active:
            status = MembershipStatus(member.membership_status).value
            raise MemberIneligible(f"Member {member_id} is {status}, not Active")
        return member

    def _oldest_pending(self, book_id: int) -> ReservationDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB)
                .where(
                    ReservationDB.book_id == book_id,
                    ReservationDB.status == ReservationStatus.PENDING,
                )
                .order_by(ReservationDB.reservation_date, ReservationDB.reservation_id)
                .limit(1)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none(),
            "Failed to read reservation queue",
        )

    def _open_claim(self, copy_id: int) -> ReservationDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB)
                .where(
                    ReservationDB.copy_id == copy_id,
                    ReservationDB.status == ReservationStatus.FULFILLED,
                    ReservationDB.loan_id.is_(None),
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none(),
            "Failed to look up reservation claim",
        )

    def _has_open_loan(self, copy_id: int) -> bool:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    exists().where(LoanDB.copy_id == copy_id, LoanDB.return_date.is_(None))
                )
            ).scalar(),
            "Failed to check open loans",
        )

    def _bind(self, reservation: ReservationDB, copy: CopyDB, when: datetime) -> None:
        """Fulfill a pending reservation with a copy held for pickup."""
        ensure_reservation_transition(reservation.status, ReservationStatus.FULFILLED)
        ensure_copy_transition(copy.status, CopyStatus.RESERVED)
        reservation.status = ReservationStatus.FULFILLED
        reservation.copy_id = copy.copy_id
        reservation.fulfilled_date = when
        copy.status = CopyStatus.RESERVED
        logger.info(
            "Reservation %s fulfilled with copy %s", reservation.reservation_id, copy.copy_id
        )

    # Checkouts and returns

    @trace_operation("check_out")
    @retry_on_concurrency
    def check_out(
        self,
        copy_id: int,
        member_id: int,
        loan_period_days: int | None = None,
        checkout_time: datetime | None = None,
    ) -> Loan:
        """
        Lend a copy to a member.

        A Reserved copy can only be checked out by the member whose fulfilled
        reservation holds it; that reservation records the new loan.

        Args:
            copy_id: Copy to lend
            member_id: Borrowing member
            loan_period_days: Days until due (default from configuration)
            checkout_time: Checkout timestamp (default now)

        Returns:
            The new open loan

        Raises:
            NotFoundError: If the copy or member does not exist
            CopyUnavailable: If the copy cannot be lent to this member
            MemberIneligible: If the member is not Active or owes too much
            ValidationError: If the loan period is shorter than a day
            ConcurrencyError: If a concurrent writer won twice
        """
        period = self.config.loan_period_days if loan_period_days is None else loan_period_days
        if period < 1:
            raise ValidationError("Loan period must be at least one day")
        now = checkout_time or datetime.now()

        copy = self._lock_copy(copy_id)
        self._eligible_member(member_id)

        owed = self.fines.outstanding_total(member_id)
        if owed > self.config.fine_threshold:
            raise MemberIneligible(
                f"Member {member_id} owes {owed} in fines "
                f"(limit {self.config.fine_threshold})"
            )

        claim = None
        if copy.status == CopyStatus.RESERVED:
            claim = self._open_claim(copy_id)
            if claim is None or claim.member_id != member_id:
                raise CopyUnavailable(f"Copy {copy_id} is held for another member")
        elif copy.status != CopyStatus.AVAILABLE:
            raise CopyUnavailable(f"Copy {copy_id} is {CopyStatus(copy.status).value}")

        ensure_copy_transition(copy.status, CopyStatus.CHECKED_OUT)
        copy.status = CopyStatus.CHECKED_OUT
        loan = LoanDB(
            copy_id=copy_id,
            member_id=member_id,
            checkout_date=now,
            due_date=now.date() + timedelta(days=period),
            late_fee=Decimal("0.00"),
            renewal_count=0,
        )
        self.session.add(loan)

        if claim is not None:
            safe_flush(self.session, "check out copy", unique_violation=ConcurrencyError)
            claim.loan_id = loan.loan_id

        safe_commit(self.session, "check out copy", unique_violation=ConcurrencyError)
        logger.info("Copy %s checked out to member %s (loan %s)", copy_id, member_id, loan.loan_id)
        record_circulation_event("checkout")
        return Loan.model_validate(loan)

    @trace_operation("return_copy")
    @retry_on_concurrency
    def return_copy(self, loan_id: int, return_timestamp: datetime | None = None) -> Loan:
        """
        Close a loan and route the copy.

        The copy goes to the oldest pending reservation for its book, or back
        to Available when nobody is waiting. A copy marked Lost or Damaged
        while on loan keeps that status. Late returns are fined in the same
        transaction.

        Raises:
            NotFoundError: If the loan does not exist
            LoanAlreadyClosed: If the loan was already returned
            ValidationError: If the return precedes the checkout
        """
        when = return_timestamp or datetime.now()

        loan = self._lock_loan(loan_id)
        if loan.return_date is not None:
            raise LoanAlreadyClosed(f"Loan {loan_id} was returned on {loan.return_date}")
        if when < loan.checkout_date:
            raise ValidationError("Return time cannot be before checkout time")

        copy = self._lock_copy(loan.copy_id)
        loan.return_date = when

        if copy.status == CopyStatus.CHECKED_OUT:
            reservation = self._oldest_pending(copy.book_id)
            if reservation is not None:
                self._bind(reservation, copy, when)
            else:
                ensure_copy_transition(copy.status, CopyStatus.AVAILABLE)
                copy.status = CopyStatus.AVAILABLE
        else:
            logger.info(
                "Copy %s returned while %s; status left unchanged",
                copy.copy_id,
                CopyStatus(copy.status).value,
            )

        fine = self.fines.stage_late_fee(loan)
        assessed = fine is not None and fine.fine_id is None
        safe_commit(self.session, "return copy", unique_violation=ConcurrencyError)
        logger.info("Loan %s closed (late fee %s)", loan_id, loan.late_fee)
        record_circulation_event("return")
        if assessed:
            record_fine_assessed(int(fine.amount * 100))
        return Loan.model_validate(loan)

    @trace_operation("renew_loan")
    @retry_on_concurrency
    def renew_loan(
        self, loan_id: int, extension_days: int | None = None, as_of: date | None = None
    ) -> Loan:
        """
        Extend the due date of an open loan.

        Overdue loans, loans at the renewal limit, and loans whose book has a
        waiting reservation cannot be renewed.

        Raises:
            NotFoundError: If the loan does not exist
            LoanAlreadyClosed: If the loan was returned
            MemberIneligible: If the borrower is no longer Active
            InvalidState: If the loan is overdue, at its limit, or wanted
        """
        days = self.config.renewal_days if extension_days is None else extension_days
        if days < 1:
            raise ValidationError("Renewal must extend the loan by at least one day")
        today = as_of or date.today()

        loan = self._lock_loan(loan_id)
        if loan.return_date is not None:
            raise LoanAlreadyClosed(f"Loan {loan_id} was already returned")
        self._eligible_member(loan.member_id)

        if loan.is_overdue(today):
            raise InvalidState(f"Loan {loan_id} is overdue and must be returned")
        if loan.renewal_count >= self.config.max_renewals:
            raise InvalidState(
                f"Loan {loan_id} has reached the renewal limit of {self.config.max_renewals}"
            )

        copy = self._lock_copy(loan.copy_id)
        if self._oldest_pending(copy.book_id) is not None:
            raise InvalidState(f"Loan {loan_id} cannot be renewed; the book is reserved")

        loan.due_date = loan.due_date + timedelta(days=days)
        loan.renewal_count += 1
        safe_commit(self.session, "renew loan", unique_violation=ConcurrencyError)
        logger.info("Loan %s renewed until %s", loan_id, loan.due_date)
        record_circulation_event("renewal")
        return Loan.model_validate(loan)

    # Reservations

    @trace_operation("reserve")
    @retry_on_concurrency
    def reserve(
        self,
        book_id: int,
        member_id: int,
        reservation_window_days: int | None = None,
        reserved_at: datetime | None = None,
    ) -> Reservation:
        """
        Place a member in the reservation queue for a book.

        Copies need not be unavailable; fulfillment happens on return or in
        ``fulfill_available_copies``.

        Raises:
            NotFoundError: If the book or member does not exist
            MemberIneligible: If the member is not Active
            DuplicateReservation: If the member already waits for this book
            ValidationError: If the window is shorter than a day
        """
        window = (
            self.config.reservation_window_days
            if reservation_window_days is None
            else reservation_window_days
        )
        if window < 1:
            raise ValidationError("Reservation window must be at least one day")
        now = reserved_at or datetime.now()

        book = safe_query(self.session, lambda s: s.get(BookDB, book_id), "Failed to get book")
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        self._eligible_member(member_id)

        duplicate = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    exists().where(
                        ReservationDB.book_id == book_id,
                        ReservationDB.member_id == member_id,
                        ReservationDB.status == ReservationStatus.PENDING,
                    )
                )
            ).scalar(),
            "Failed to check existing reservations",
        )
        if duplicate:
            raise DuplicateReservation(
                f"Member {member_id} already has a pending reservation for book {book_id}"
            )

        reservation = ReservationDB(
            book_id=book_id,
            member_id=member_id,
            reservation_date=now,
            expiration_date=now + timedelta(days=window),
            status=ReservationStatus.PENDING,
        )
        self.session.add(reservation)
        safe_commit(self.session, "reserve book", unique_violation=ConcurrencyError)
        logger.info(
            "Member %s reserved book %s (reservation %s)",
            member_id,
            book_id,
            reservation.reservation_id,
        )
        record_circulation_event("reservation")
        return Reservation.model_validate(reservation)

    @trace_operation("cancel_reservation")
    @retry_on_concurrency
    def cancel_reservation(self, reservation_id: int) -> Reservation:
        """
        Cancel a pending reservation.

        Raises:
            NotFoundError: If the reservation does not exist
            InvalidState: If the reservation is no longer Pending
        """
        reservation = self._lock_reservation(reservation_id)
        ensure_reservation_transition(reservation.status, ReservationStatus.CANCELLED)
        reservation.status = ReservationStatus.CANCELLED
        safe_commit(self.session, "cancel reservation", unique_violation=ConcurrencyError)
        logger.info("Reservation %s cancelled", reservation_id)
        return Reservation.model_validate(reservation)

    # Sweeps

    def _sweep_ids(self, query) -> list[int]:
        return list(
            safe_query(
                self.session, lambda s: s.execute(query).scalars().all(), "Failed to plan sweep"
            )
        )

    def expire_stale_pending(self, now: datetime | None = None) -> SweepResult:
        """
        Expire stale reservations, one record per transaction.

        Pending reservations past their expiration date become Expired.
        Fulfilled reservations not picked up within the pickup window become
        Expired and their copy returns to Available. Records changed by a
        concurrent writer in the meantime are skipped.
        """
        now = now or datetime.now()
        pickup_cutoff = now - timedelta(days=self.config.pickup_window_days)
        result = SweepResult()

        with trace_repository_operation("circulation", "expire_stale_pending", "reservations"):
            pending_ids = self._sweep_ids(
                select(ReservationDB.reservation_id)
                .where(
                    ReservationDB.status == ReservationStatus.PENDING,
                    ReservationDB.expiration_date < now,
                )
                .order_by(ReservationDB.reservation_id)
            )
            for reservation_id in pending_ids:
                try:
                    if self._expire_pending(reservation_id, now):
                        result.processed.append(reservation_id)
                    else:
                        result.skipped.append(reservation_id)
                except (ConcurrencyError, NotFoundError):
                    logger.warning("Reservation %s changed during sweep; skipped", reservation_id)
                    result.skipped.append(reservation_id)

            unclaimed_ids = self._sweep_ids(
                select(ReservationDB.reservation_id)
                .where(
                    ReservationDB.status == ReservationStatus.FULFILLED,
                    ReservationDB.loan_id.is_(None),
                    ReservationDB.fulfilled_date < pickup_cutoff,
                )
                .order_by(ReservationDB.reservation_id)
            )
            for reservation_id in unclaimed_ids:
                try:
                    expired, copy_id = self._expire_unclaimed(reservation_id, pickup_cutoff)
                except (ConcurrencyError, NotFoundError):
                    logger.warning("Reservation %s changed during sweep; skipped", reservation_id)
                    result.skipped.append(reservation_id)
                    continue
                if not expired:
                    result.skipped.append(reservation_id)
                    continue
                result.processed.append(reservation_id)
                if copy_id is not None:
                    result.released_copies.append(copy_id)

        logger.info(
            "Expiry sweep: %d expired, %d copies released, %d skipped",
            result.count,
            len(result.released_copies),
            len(result.skipped),
        )
        record_sweep("expire_stale_pending", result.count, len(result.skipped))
        return result

    def _expire_pending(self, reservation_id: int, now: datetime) -> bool:
        reservation = self._lock_reservation(reservation_id)
        if (
            reservation.status != ReservationStatus.PENDING
            or reservation.expiration_date >= now
        ):
            self.session.rollback()
            return False
        reservation.status = ReservationStatus.EXPIRED
        safe_commit(self.session, "expire reservation", unique_violation=ConcurrencyError)
        return True

    def _expire_unclaimed(
        self, reservation_id: int, pickup_cutoff: datetime
    ) -> tuple[bool, int | None]:
        """Expire one unclaimed pickup; returns (expired, released copy id)."""
        reservation = self._lock_reservation(reservation_id)
        if (
            reservation.status != ReservationStatus.FULFILLED
            or reservation.loan_id is not None
            or reservation.fulfilled_date >= pickup_cutoff
        ):
            self.session.rollback()
            return False, None

        ensure_reservation_transition(reservation.status, ReservationStatus.EXPIRED)
        reservation.status = ReservationStatus.EXPIRED

        released = None
        if reservation.copy_id is not None:
            copy = self._lock_copy(reservation.copy_id)
            if copy.status == CopyStatus.RESERVED:
                ensure_copy_transition(copy.status, CopyStatus.AVAILABLE)
                copy.status = CopyStatus.AVAILABLE
                released = copy.copy_id

        safe_commit(self.session, "expire unclaimed reservation", unique_violation=ConcurrencyError)
        return True, released

    def fulfill_available_copies(self, now: datetime | None = None) -> SweepResult:
        """
        Bind idle copies to waiting reservations, one copy per transaction.

        Every Available copy whose book has pending reservations is handed to
        the oldest of them. ``processed`` lists the fulfilled reservations and
        ``skipped`` the copies that were no longer eligible.
        """
        now = now or datetime.now()
        result = SweepResult()

        waiting = exists().where(
            ReservationDB.book_id == CopyDB.book_id,
            ReservationDB.status == ReservationStatus.PENDING,
        )
        with trace_repository_operation("circulation", "fulfill_available_copies", "book_copies"):
            copy_ids = self._sweep_ids(
                select(CopyDB.copy_id)
                .where(CopyDB.status == CopyStatus.AVAILABLE, waiting)
                .order_by(CopyDB.copy_id)
            )
            for copy_id in copy_ids:
                try:
                    reservation_id = self._fulfill_one(copy_id, now)
                except (ConcurrencyError, NotFoundError):
                    logger.warning("Copy %s changed during sweep; skipped", copy_id)
                    result.skipped.append(copy_id)
                    continue
                if reservation_id is None:
                    result.skipped.append(copy_id)
                else:
                    result.processed.append(reservation_id)

        logger.info("Fulfillment sweep: %d reservations fulfilled", result.count)
        record_sweep("fulfill_available_copies", result.count, len(result.skipped))
        return result

    def _fulfill_one(self, copy_id: int, now: datetime) -> int | None:
        copy = self._lock_copy(copy_id)
        if copy.status != CopyStatus.AVAILABLE:
            self.session.rollback()
            return None
        reservation = self._oldest_pending(copy.book_id)
        if reservation is None:
            self.session.rollback()
            return None
        self._bind(reservation, copy, now)
        safe_commit(self.session, "fulfill reservation", unique_violation=ConcurrencyError)
        return reservation.reservation_id

    # Staff holds

    @trace_operation("mark_copy")
    @retry_on_concurrency
    def mark_copy(self, copy_id: int, status: CopyStatus) -> CopyStatus:
        """
        Mark a copy Lost or Damaged.

        A fulfilled reservation waiting on the copy expires, since the copy
        can no longer be picked up. An open loan stays open until returned.

        Raises:
            NotFoundError: If the copy does not exist
            ValidationError: If ``status`` is not Lost or Damaged
            InvalidState: If the copy already has that status
        """
        status = CopyStatus(status)
        if status not in STAFF_HOLDS:
            raise ValidationError("Copies can only be marked Lost or Damaged")

        copy = self._lock_copy(copy_id)
        ensure_copy_transition(copy.status, status)

        if copy.status == CopyStatus.RESERVED:
            claim = self._open_claim(copy_id)
            if claim is not None:
                ensure_reservation_transition(claim.status, ReservationStatus.EXPIRED)
                claim.status = ReservationStatus.EXPIRED
                logger.info(
                    "Reservation %s expired; its copy was marked %s",
                    claim.reservation_id,
                    status.value,
                )

        copy.status = status
        safe_commit(self.session, "mark copy", unique_violation=ConcurrencyError)
        logger.info("Copy %s marked %s", copy_id, status.value)
        return status

    @trace_operation("restore_copy")
    @retry_on_concurrency
    def restore_copy(self, copy_id: int) -> CopyStatus:
        """
        Return a Lost or Damaged copy to the shelf.

        Raises:
            NotFoundError: If the copy does not exist
            InvalidState: If the copy is not held, or is still on an open loan
        """
        copy = self._lock_copy(copy_id)
        if copy.status not in STAFF_HOLDS:
            raise InvalidState(f"Copy {copy_id} is {CopyStatus(copy.status).value}, not held")
        if self._has_open_loan(copy_id):
            raise InvalidState(f"Copy {copy_id} is still on an open loan; return it first")

        ensure_copy_transition(copy.status, CopyStatus.AVAILABLE)
        copy.status = CopyStatus.AVAILABLE
        safe_commit(self.session, "restore copy", unique_violation=ConcurrencyError)
        logger.info("Copy %s restored to Available", copy_id)
        return CopyStatus.AVAILABLE

    # Queries

    def get_loan(self, loan_id: int) -> Loan:
        """
        Get a loan by ID.

        Raises:
            NotFoundError: If the loan does not exist
        """
        loan = safe_query(self.session, lambda s: s.get(LoanDB, loan_id), "Failed to get loan")
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return Loan.model_validate(loan)

    def get_open_loans(
        self,
        member_id: int | None = None,
        overdue_only: bool = False,
        as_of: date | None = None,
    ) -> list[Loan]:
        """Open loans, optionally for one member and optionally only overdue ones."""
        query = select(LoanDB).where(LoanDB.return_date.is_(None))
        if member_id is not None:
            query = query.where(LoanDB.member_id == member_id)
        if overdue_only:
            query = query.where(LoanDB.due_date < (as_of or date.today()))
        query = query.order_by(LoanDB.due_date, LoanDB.loan_id)

        loans = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to list open loans"
        )
        return [Loan.model_validate(loan) for loan in loans]

    def get_reservation(self, reservation_id: int) -> Reservation:
        """
        Get a reservation by ID.

        Raises:
            NotFoundError: If the reservation does not exist
        """
        reservation = safe_query(
            self.session,
            lambda s: s.get(ReservationDB, reservation_id),
            "Failed to get reservation",
        )
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return Reservation.model_validate(reservation)

    def get_reservation_queue(self, book_id: int) -> list[Reservation]:
        """Pending reservations for a book in fulfillment order."""
        reservations = safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB)
                .where(
                    ReservationDB.book_id == book_id,
                    ReservationDB.status == ReservationStatus.PENDING,
                )
                .order_by(ReservationDB.reservation_date, ReservationDB.reservation_id)
            )
            .scalars()
            .all(),
            "Failed to read reservation queue",
        )
        return [Reservation.model_validate(r) for r in reservations]

    def get_claim(self, copy_id: int) -> Reservation | None:
        """The fulfilled reservation holding a copy for pickup, if any."""
        claim = safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB).where(
                    ReservationDB.copy_id == copy_id,
                    ReservationDB.status == ReservationStatus.FULFILLED,
                    ReservationDB.loan_id.is_(None),
                )
            ).scalar_one_or_none(),
            "Failed to look up reservation claim",
        )
        return Reservation.model_validate(claim) if claim else None
