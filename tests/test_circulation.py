"""
Tests for the circulation engine.

These tests cover:
1. Checkout preconditions and the resulting loan
2. Returns, copy routing and late fees
3. Reservation queue order and pickup claims
4. Renewals
5. Expiry and fulfillment sweeps
6. Staff holds (Lost / Damaged)
7. Concurrent checkouts of one copy
8. Concurrent returns and fulfillment sweeps
"""

import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from library_circulation.config import LibraryConfig
from library_circulation.database import BookRepository, CirculationRepository, MemberRepository
from library_circulation.database.schema import Loan as LoanDB
from library_circulation.database.schema import Reservation as ReservationDB
from library_circulation.errors import (
    ConcurrencyError,
    CopyUnavailable,
    DuplicateReservation,
    InvalidState,
    LoanAlreadyClosed,
    MemberIneligible,
    NotFoundError,
    ValidationError,
)
from library_circulation.models import CopyStatus, FineStatus, MembershipStatus, ReservationStatus

T0 = datetime(2024, 3, 1, 10, 0)


def copy_status(session, copy_id: int) -> CopyStatus:
    return BookRepository(session).get_copy(copy_id).status


class TestCheckOut:
    """Test lending a copy."""

    def test_checkout_creates_open_loan(self, circulation, test_db_session, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id, checkout_time=T0)

        assert loan.is_open
        assert loan.checkout_date == T0
        assert loan.due_date == date(2024, 3, 15)
        assert loan.late_fee == Decimal("0.00")
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.CHECKED_OUT

    def test_custom_loan_period(self, circulation, copy, member):
        loan = circulation.check_out(
            copy.copy_id, member.member_id, loan_period_days=7, checkout_time=T0
        )
        assert loan.due_date == date(2024, 3, 8)
        assert loan.loan_period_days == 7

    def test_loan_period_must_be_positive(self, circulation, copy, member):
        with pytest.raises(ValidationError):
            circulation.check_out(copy.copy_id, member.member_id, loan_period_days=0)

    def test_checked_out_copy_is_unavailable(
        self, circulation, test_db_session, copy, make_member
    ):
        first, second = make_member(), make_member()
        circulation.check_out(copy.copy_id, first.member_id)

        with pytest.raises(CopyUnavailable):
            circulation.check_out(copy.copy_id, second.member_id)

        # The failed checkout changed nothing
        assert len(circulation.get_open_loans()) == 1
        assert circulation.get_open_loans(member_id=second.member_id) == []
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.CHECKED_OUT

    @pytest.mark.parametrize("status", [MembershipStatus.SUSPENDED, MembershipStatus.EXPIRED])
    def test_inactive_member_is_ineligible(
        self, circulation, test_db_session, staff, copy, member, status
    ):
        MemberRepository(test_db_session, staff.staff_id).set_status(member.member_id, status)

        with pytest.raises(MemberIneligible):
            circulation.check_out(copy.copy_id, member.member_id)
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.AVAILABLE

    def test_removed_member_is_ineligible(self, circulation, test_db_session, staff, copy, member):
        MemberRepository(test_db_session, staff.staff_id).soft_delete(member.member_id)

        with pytest.raises(MemberIneligible):
            circulation.check_out(copy.copy_id, member.member_id)

    def test_fines_over_threshold_block_checkout(
        self, test_db_session, staff, book, make_copy, member
    ):
        strict_policy = LibraryConfig(fine_threshold=Decimal("1.00"))
        repo = CirculationRepository(test_db_session, staff.staff_id, config=strict_policy)
        first, second = make_copy(book.book_id), make_copy(book.book_id)

        loan = repo.check_out(first.copy_id, member.member_id, checkout_time=T0)
        repo.return_copy(loan.loan_id, T0 + timedelta(days=20))  # 1.50 owed

        with pytest.raises(MemberIneligible, match="owes 1.50"):
            repo.check_out(second.copy_id, member.member_id)

    def test_fines_at_threshold_allow_checkout(self, circulation, book, make_copy, member):
        first, second = make_copy(book.book_id), make_copy(book.book_id)
        loan = circulation.check_out(first.copy_id, member.member_id, checkout_time=T0)
        circulation.return_copy(loan.loan_id, T0 + timedelta(days=54))  # 40 days late: 10.00

        assert circulation.fines.outstanding_total(member.member_id) == Decimal("10.00")
        assert circulation.check_out(second.copy_id, member.member_id).is_open

    def test_unknown_copy_or_member(self, circulation, copy, member):
        with pytest.raises(NotFoundError):
            circulation.check_out(9999, member.member_id)
        with pytest.raises(NotFoundError):
            circulation.check_out(copy.copy_id, 9999)


class TestReturnCopy:
    """Test closing loans."""

    def test_late_return_example(self, circulation, test_db_session, copy, member):
        """Due in 14 days, returned after 20 at 0.25 per day: 1.50 outstanding."""
        loan = circulation.check_out(copy.copy_id, member.member_id, checkout_time=T0)

        returned = circulation.return_copy(loan.loan_id, T0 + timedelta(days=20))

        assert returned.return_date == T0 + timedelta(days=20)
        assert returned.late_fee == Decimal("1.50")
        assert returned.days_late() == 6

        fine = circulation.fines.get_late_fee(loan.loan_id)
        assert fine is not None
        assert fine.amount == Decimal("1.50")
        assert fine.status == FineStatus.OUTSTANDING
        assert fine.member_id == member.member_id
        assert fine.reason == "late return"
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.AVAILABLE

    def test_on_time_return_has_no_fine(self, circulation, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id, checkout_time=T0)

        returned = circulation.return_copy(loan.loan_id, datetime(2024, 3, 15, 23, 59))

        assert returned.late_fee == Decimal("0.00")
        assert circulation.fines.get_late_fee(loan.loan_id) is None

    def test_double_return_fails(self, circulation, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id, checkout_time=T0)
        circulation.return_copy(loan.loan_id, T0 + timedelta(days=3))

        with pytest.raises(LoanAlreadyClosed):
            circulation.return_copy(loan.loan_id, T0 + timedelta(days=4))

    def test_return_before_checkout_fails(self, circulation, test_db_session, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id, checkout_time=T0)

        with pytest.raises(ValidationError):
            circulation.return_copy(loan.loan_id, T0 - timedelta(hours=1))
        assert circulation.get_loan(loan.loan_id).is_open
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.CHECKED_OUT

    def test_unknown_loan(self, circulation):
        with pytest.raises(NotFoundError):
            circulation.return_copy(9999)

    def test_return_binds_oldest_reservation(
        self, circulation, test_db_session, book, copy, make_member
    ):
        """M1 reserves, M2 borrows and returns the sole copy: it is held for M1."""
        m1, m2 = make_member(), make_member()
        reservation = circulation.reserve(book.book_id, m1.member_id, reserved_at=T0)
        loan = circulation.check_out(
            copy.copy_id, m2.member_id, checkout_time=T0 + timedelta(hours=1)
        )

        circulation.return_copy(loan.loan_id, T0 + timedelta(days=5))

        fulfilled = circulation.get_reservation(reservation.reservation_id)
        assert fulfilled.status == ReservationStatus.FULFILLED
        assert fulfilled.copy_id == copy.copy_id
        assert fulfilled.fulfilled_date == T0 + timedelta(days=5)
        assert fulfilled.is_awaiting_pickup
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.RESERVED
        assert circulation.get_claim(copy.copy_id).reservation_id == reservation.reservation_id

    def test_fulfillment_is_fifo(self, circulation, book, copy, make_member):
        borrower, early, late, middle = (make_member() for _ in range(4))
        # Placed out of order on purpose; reservation_date decides
        r_late = circulation.reserve(book.book_id, late.member_id, reserved_at=T0 + timedelta(days=2))
        r_early = circulation.reserve(book.book_id, early.member_id, reserved_at=T0)
        r_middle = circulation.reserve(
            book.book_id, middle.member_id, reserved_at=T0 + timedelta(days=1)
        )

        queue = circulation.get_reservation_queue(book.book_id)
        assert [r.reservation_id for r in queue] == [
            r_early.reservation_id,
            r_middle.reservation_id,
            r_late.reservation_id,
        ]

        loan = circulation.check_out(
            copy.copy_id, borrower.member_id, checkout_time=T0 + timedelta(days=3)
        )
        circulation.return_copy(loan.loan_id, T0 + timedelta(days=4))

        assert circulation.get_reservation(r_early.reservation_id).status == (
            ReservationStatus.FULFILLED
        )
        assert circulation.get_reservation(r_middle.reservation_id).status == (
            ReservationStatus.PENDING
        )
        assert circulation.get_reservation(r_late.reservation_id).status == (
            ReservationStatus.PENDING
        )

    def test_late_return_to_waiting_reservation_still_fined(
        self, circulation, book, copy, make_member
    ):
        borrower, waiting = make_member(), make_member()
        loan = circulation.check_out(copy.copy_id, borrower.member_id, checkout_time=T0)
        circulation.reserve(book.book_id, waiting.member_id, reserved_at=T0 + timedelta(days=1))

        returned = circulation.return_copy(loan.loan_id, T0 + timedelta(days=16))

        assert returned.late_fee == Decimal("0.50")
        assert circulation.get_claim(copy.copy_id).member_id == waiting.member_id


class TestClaims:
    """Test picking up a copy held by a fulfilled reservation."""

    @pytest.fixture
    def held_copy(self, circulation, book, copy, make_member):
        borrower, holder = make_member(), make_member()
        reservation = circulation.reserve(book.book_id, holder.member_id, reserved_at=T0)
        loan = circulation.check_out(
            copy.copy_id, borrower.member_id, checkout_time=T0 + timedelta(minutes=5)
        )
        circulation.return_copy(loan.loan_id, T0 + timedelta(days=2))
        return reservation, holder

    def test_holder_can_claim(self, circulation, test_db_session, copy, held_copy):
        reservation, holder = held_copy

        loan = circulation.check_out(copy.copy_id, holder.member_id)

        claimed = circulation.get_reservation(reservation.reservation_id)
        assert claimed.status == ReservationStatus.FULFILLED
        assert claimed.loan_id == loan.loan_id
        assert not claimed.is_awaiting_pickup
        assert circulation.get_claim(copy.copy_id) is None
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.CHECKED_OUT

    def test_other_member_cannot_take_held_copy(self, circulation, copy, make_member, held_copy):
        with pytest.raises(CopyUnavailable, match="held for another member"):
            circulation.check_out(copy.copy_id, make_member().member_id)


class TestReservations:
    """Test placing and cancelling reservations."""

    def test_reserve_creates_pending(self, circulation, book, member):
        reservation = circulation.reserve(book.book_id, member.member_id, reserved_at=T0)

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.expiration_date == T0 + timedelta(days=30)
        assert reservation.copy_id is None

    def test_custom_window(self, circulation, book, member):
        reservation = circulation.reserve(
            book.book_id, member.member_id, reservation_window_days=5, reserved_at=T0
        )
        assert reservation.expiration_date == T0 + timedelta(days=5)

    def test_duplicate_pending_reservation(self, circulation, book, member):
        circulation.reserve(book.book_id, member.member_id)

        with pytest.raises(DuplicateReservation):
            circulation.reserve(book.book_id, member.member_id)

    def test_reserve_again_after_cancel(self, circulation, book, member):
        first = circulation.reserve(book.book_id, member.member_id)
        circulation.cancel_reservation(first.reservation_id)

        second = circulation.reserve(book.book_id, member.member_id)
        assert second.reservation_id != first.reservation_id

    def test_inactive_member_cannot_reserve(self, circulation, test_db_session, staff, book, member):
        MemberRepository(test_db_session, staff.staff_id).set_status(
            member.member_id, MembershipStatus.SUSPENDED
        )
        with pytest.raises(MemberIneligible):
            circulation.reserve(book.book_id, member.member_id)

    def test_unknown_book(self, circulation, member):
        with pytest.raises(NotFoundError):
            circulation.reserve(9999, member.member_id)

    def test_window_must_be_positive(self, circulation, book, member):
        with pytest.raises(ValidationError):
            circulation.reserve(book.book_id, member.member_id, reservation_window_days=0)

    def test_cancel_pending(self, circulation, book, member):
        reservation = circulation.reserve(book.book_id, member.member_id)

        cancelled = circulation.cancel_reservation(reservation.reservation_id)

        assert cancelled.status == ReservationStatus.CANCELLED
        assert circulation.get_reservation_queue(book.book_id) == []

    def test_cancel_twice_is_invalid(self, circulation, book, member):
        reservation = circulation.reserve(book.book_id, member.member_id)
        circulation.cancel_reservation(reservation.reservation_id)

        with pytest.raises(InvalidState):
            circulation.cancel_reservation(reservation.reservation_id)

    def test_cannot_cancel_fulfilled(self, circulation, book, copy, member):
        reservation = circulation.reserve(book.book_id, member.member_id)
        circulation.fulfill_available_copies()

        with pytest.raises(InvalidState):
            circulation.cancel_reservation(reservation.reservation_id)


class TestRenewals:
    """Test extending loans."""

    def test_renew_extends_due_date(self, circulation, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id)

        renewed = circulation.renew_loan(loan.loan_id)

        assert renewed.due_date == loan.due_date + timedelta(days=14)
        assert renewed.renewal_count == 1

    def test_renewal_limit(self, test_db_session, staff, copy, member):
        repo = CirculationRepository(
            test_db_session, staff.staff_id, config=LibraryConfig(max_renewals=1)
        )
        loan = repo.check_out(copy.copy_id, member.member_id)
        repo.renew_loan(loan.loan_id, extension_days=3)

        with pytest.raises(InvalidState, match="renewal limit"):
            repo.renew_loan(loan.loan_id)

    def test_overdue_loan_cannot_be_renewed(self, circulation, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id, checkout_time=T0)

        with pytest.raises(InvalidState, match="overdue"):
            circulation.renew_loan(loan.loan_id, as_of=date(2024, 3, 20))

    def test_reserved_book_cannot_be_renewed(self, circulation, book, copy, make_member):
        borrower, waiting = make_member(), make_member()
        loan = circulation.check_out(copy.copy_id, borrower.member_id)
        circulation.reserve(book.book_id, waiting.member_id)

        with pytest.raises(InvalidState, match="reserved"):
            circulation.renew_loan(loan.loan_id)

    def test_returned_loan_cannot_be_renewed(self, circulation, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id)
        circulation.return_copy(loan.loan_id)

        with pytest.raises(LoanAlreadyClosed):
            circulation.renew_loan(loan.loan_id)


class TestExpireStalePending:
    """Test the reservation expiry sweep."""

    def test_expires_only_past_pending(self, circulation, book, make_book, make_member):
        other_book = make_book()
        stale = circulation.reserve(
            book.book_id, make_member().member_id, reservation_window_days=2, reserved_at=T0
        )
        fresh = circulation.reserve(
            other_book.book_id, make_member().member_id, reserved_at=T0
        )
        cancelled = circulation.reserve(
            book.book_id, make_member().member_id, reservation_window_days=1, reserved_at=T0
        )
        circulation.cancel_reservation(cancelled.reservation_id)

        result = circulation.expire_stale_pending(now=T0 + timedelta(days=10))

        assert result.processed == [stale.reservation_id]
        assert result.released_copies == []
        assert circulation.get_reservation(stale.reservation_id).status == (
            ReservationStatus.EXPIRED
        )
        assert circulation.get_reservation(fresh.reservation_id).status == (
            ReservationStatus.PENDING
        )
        assert circulation.get_reservation(cancelled.reservation_id).status == (
            ReservationStatus.CANCELLED
        )

    def test_expiration_boundary_is_exclusive(self, circulation, book, member):
        reservation = circulation.reserve(
            book.book_id, member.member_id, reservation_window_days=1, reserved_at=T0
        )

        result = circulation.expire_stale_pending(now=T0 + timedelta(days=1))

        assert result.count == 0
        assert circulation.get_reservation(reservation.reservation_id).status == (
            ReservationStatus.PENDING
        )

    def test_unclaimed_pickup_releases_copy(
        self, circulation, test_db_session, book, copy, make_member
    ):
        borrower, holder = make_member(), make_member()
        now = datetime.now()
        reservation = circulation.reserve(
            book.book_id, holder.member_id, reserved_at=now - timedelta(days=12)
        )
        loan = circulation.check_out(
            copy.copy_id, borrower.member_id, checkout_time=now - timedelta(days=10)
        )
        circulation.return_copy(loan.loan_id, now - timedelta(days=5))
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.RESERVED

        result = circulation.expire_stale_pending(now=now)

        assert result.processed == [reservation.reservation_id]
        assert result.released_copies == [copy.copy_id]
        assert circulation.get_reservation(reservation.reservation_id).status == (
            ReservationStatus.EXPIRED
        )
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.AVAILABLE

    def test_pickup_within_window_is_kept(self, circulation, book, copy, make_member):
        borrower, holder = make_member(), make_member()
        reservation = circulation.reserve(book.book_id, holder.member_id, reserved_at=T0)
        loan = circulation.check_out(
            copy.copy_id, borrower.member_id, checkout_time=T0 + timedelta(hours=1)
        )
        circulation.return_copy(loan.loan_id, T0 + timedelta(days=2))

        result = circulation.expire_stale_pending(now=T0 + timedelta(days=4))

        assert result.count == 0
        assert circulation.get_reservation(reservation.reservation_id).is_awaiting_pickup

    def test_claimed_reservation_is_not_expired(self, circulation, book, copy, make_member):
        borrower, holder = make_member(), make_member()
        circulation.reserve(book.book_id, holder.member_id, reserved_at=T0)
        loan = circulation.check_out(
            copy.copy_id, borrower.member_id, checkout_time=T0 + timedelta(hours=1)
        )
        circulation.return_copy(loan.loan_id, T0 + timedelta(days=1))
        circulation.check_out(copy.copy_id, holder.member_id, checkout_time=T0 + timedelta(days=2))

        result = circulation.expire_stale_pending(now=T0 + timedelta(days=20))

        assert result.count == 0
        assert result.released_copies == []


class TestFulfillAvailableCopies:
    """Test the fulfillment sweep."""

    def test_idle_copy_goes_to_oldest_reservation(
        self, circulation, test_db_session, book, copy, make_member
    ):
        first, second = make_member(), make_member()
        r1 = circulation.reserve(book.book_id, first.member_id, reserved_at=T0)
        r2 = circulation.reserve(book.book_id, second.member_id, reserved_at=T0 + timedelta(hours=1))

        result = circulation.fulfill_available_copies(now=T0 + timedelta(days=1))

        assert result.processed == [r1.reservation_id]
        assert circulation.get_reservation(r1.reservation_id).copy_id == copy.copy_id
        assert circulation.get_reservation(r2.reservation_id).status == ReservationStatus.PENDING
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.RESERVED

    def test_each_copy_serves_one_reservation(self, circulation, book, make_copy, make_member):
        copies = [make_copy(book.book_id), make_copy(book.book_id)]
        reservations = [
            circulation.reserve(book.book_id, make_member().member_id, reserved_at=T0 + timedelta(hours=i))
            for i in range(3)
        ]

        result = circulation.fulfill_available_copies()

        assert result.processed == [r.reservation_id for r in reservations[:2]]
        bound = {circulation.get_reservation(r.reservation_id).copy_id for r in reservations[:2]}
        assert bound == {c.copy_id for c in copies}
        assert circulation.get_reservation_queue(book.book_id)[0].reservation_id == (
            reservations[2].reservation_id
        )

    def test_nothing_waiting(self, circulation, copy):
        result = circulation.fulfill_available_copies()
        assert result.count == 0
        assert result.skipped == []


class TestStaffHolds:
    """Test marking copies Lost or Damaged and restoring them."""

    def test_mark_and_restore(self, circulation, test_db_session, copy):
        assert circulation.mark_copy(copy.copy_id, CopyStatus.DAMAGED) == CopyStatus.DAMAGED
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.DAMAGED

        assert circulation.restore_copy(copy.copy_id) == CopyStatus.AVAILABLE
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.AVAILABLE

    def test_only_holds_can_be_marked(self, circulation, copy):
        with pytest.raises(ValidationError):
            circulation.mark_copy(copy.copy_id, CopyStatus.CHECKED_OUT)

    def test_held_copy_cannot_be_lent(self, circulation, copy, member):
        circulation.mark_copy(copy.copy_id, CopyStatus.LOST)

        with pytest.raises(CopyUnavailable):
            circulation.check_out(copy.copy_id, member.member_id)

    def test_lost_while_on_loan(self, circulation, test_db_session, copy, member):
        loan = circulation.check_out(copy.copy_id, member.member_id)
        circulation.mark_copy(copy.copy_id, CopyStatus.LOST)

        with pytest.raises(InvalidState, match="open loan"):
            circulation.restore_copy(copy.copy_id)

        # Found and returned: the loan closes, the copy stays Lost until restored
        circulation.return_copy(loan.loan_id)
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.LOST
        circulation.restore_copy(copy.copy_id)
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.AVAILABLE

    def test_marking_held_copy_expires_claim(self, circulation, book, copy, member):
        reservation = circulation.reserve(book.book_id, member.member_id)
        circulation.fulfill_available_copies()

        circulation.mark_copy(copy.copy_id, CopyStatus.DAMAGED)

        assert circulation.get_reservation(reservation.reservation_id).status == (
            ReservationStatus.EXPIRED
        )
        assert circulation.get_claim(copy.copy_id) is None

    def test_restore_available_copy_is_invalid(self, circulation, copy):
        with pytest.raises(InvalidState):
            circulation.restore_copy(copy.copy_id)


class TestQueries:
    """Test loan and reservation lookups."""

    def test_open_and_overdue_loans(self, circulation, book, make_copy, make_member):
        m1, m2 = make_member(), make_member()
        c1, c2, c3 = (make_copy(book.book_id) for _ in range(3))
        overdue = circulation.check_out(c1.copy_id, m1.member_id, checkout_time=T0)
        current = circulation.check_out(c2.copy_id, m1.member_id)
        returned = circulation.check_out(c3.copy_id, m2.member_id)
        circulation.return_copy(returned.loan_id)

        assert {loan.loan_id for loan in circulation.get_open_loans()} == {
            overdue.loan_id,
            current.loan_id,
        }
        assert [loan.loan_id for loan in circulation.get_open_loans(overdue_only=True)] == [
            overdue.loan_id
        ]
        assert circulation.get_open_loans(member_id=m2.member_id) == []

    def test_unknown_ids(self, circulation):
        with pytest.raises(NotFoundError):
            circulation.get_loan(9999)
        with pytest.raises(NotFoundError):
            circulation.get_reservation(9999)


@pytest.mark.concurrency
class TestConcurrentCheckout:
    """Two terminals check out the same copy at once."""

    def test_exactly_one_checkout_wins(self, db_manager, test_db_session, staff, copy, make_member):
        members = [make_member(), make_member()]
        barrier = threading.Barrier(len(members))
        outcomes: list[object] = []
        lock = threading.Lock()

        def attempt(member_id: int) -> None:
            session = db_manager.create_session()
            try:
                repo = CirculationRepository(session, staff.staff_id)
                barrier.wait()
                result = repo.check_out(copy.copy_id, member_id)
            except (CopyUnavailable, ConcurrencyError) as e:
                result = e
            finally:
                session.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(m.member_id,)) for m in members]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        loans = [o for o in outcomes if not isinstance(o, Exception)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(loans) == 1
        assert len(failures) == 1

        test_db_session.expire_all()
        open_loans = test_db_session.execute(
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.copy_id == copy.copy_id, LoanDB.return_date.is_(None))
        ).scalar()
        assert open_loans == 1
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.CHECKED_OUT


def run_together(db_manager, staff_id: int, *operations) -> list[object]:
    """Run each operation on its own session and thread, released at once.

    Returns each operation's result or raised library error, in order.
    """
    barrier = threading.Barrier(len(operations))
    outcomes: list[object] = [None] * len(operations)

    def worker(index: int, operation) -> None:
        session = db_manager.create_session()
        try:
            repo = CirculationRepository(session, staff_id)
            barrier.wait()
            outcomes[index] = operation(repo)
        except (CopyUnavailable, ConcurrencyError) as e:
            outcomes[index] = e
        finally:
            session.close()

    threads = [
        threading.Thread(target=worker, args=(i, op)) for i, op in enumerate(operations)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def fulfilled_claims(session, book_id: int) -> list[ReservationDB]:
    session.expire_all()
    return list(
        session.execute(
            select(ReservationDB).where(
                ReservationDB.book_id == book_id,
                ReservationDB.status == ReservationStatus.FULFILLED,
            )
        ).scalars()
    )


@pytest.mark.concurrency
class TestConcurrentFulfillment:
    """Returns and sweeps binding copies to the same queue at once."""

    def test_parallel_sweeps_bind_one_reservation(
        self, db_manager, test_db_session, staff, circulation, book, copy, make_member
    ):
        first = circulation.reserve(book.book_id, make_member().member_id)
        second = circulation.reserve(book.book_id, make_member().member_id)

        outcomes = run_together(
            db_manager,
            staff.staff_id,
            lambda repo: repo.fulfill_available_copies(),
            lambda repo: repo.fulfill_available_copies(),
        )

        assert sum(len(result.processed) for result in outcomes) == 1
        claims = fulfilled_claims(test_db_session, book.book_id)
        assert [(c.reservation_id, c.copy_id) for c in claims] == [
            (first.reservation_id, copy.copy_id)
        ]
        assert circulation.get_reservation(second.reservation_id).status == (
            ReservationStatus.PENDING
        )
        assert copy_status(test_db_session, copy.copy_id) == CopyStatus.RESERVED

    def test_return_racing_sweep_binds_each_copy_once(
        self, db_manager, test_db_session, staff, circulation, book, make_copy, make_member
    ):
        returning, idle = make_copy(book.book_id), make_copy(book.book_id)
        loan = circulation.check_out(returning.copy_id, make_member().member_id)
        oldest = circulation.reserve(book.book_id, make_member().member_id)
        circulation.reserve(book.book_id, make_member().member_id)

        returned, _ = run_together(
            db_manager,
            staff.staff_id,
            lambda repo: repo.return_copy(loan.loan_id),
            lambda repo: repo.fulfill_available_copies(),
        )

        assert returned.return_date is not None
        claims = fulfilled_claims(test_db_session, book.book_id)
        held = [c.copy_id for c in claims]
        assert len(held) == len(set(held))
        assert oldest.reservation_id in {c.reservation_id for c in claims}
        for copy_id in (returning.copy_id, idle.copy_id):
            status = copy_status(test_db_session, copy_id)
            assert (status == CopyStatus.RESERVED) == (copy_id in held)
