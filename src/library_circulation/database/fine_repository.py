"""
Fines ledger for the library circulation system.

Fines are created by the circulation engine when a loan comes back late, and
afterwards only ever move Outstanding -> Paid or Outstanding -> Waived.
Payment is all-or-nothing: the schema records a single payment date and no
running balance.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import LibraryConfig, get_config
from ..errors import ConcurrencyError, NotFoundError, ValidationError
from ..models.enums import FineStatus, ensure_fine_transition
from ..models.fine import CENTS, Fine, calculate_late_fee
from ..observability.decorators import trace_operation
from ..observability.metrics import record_fine_assessed
from .audit import set_audit_actor
from .schema import LATE_RETURN_REASON
from .schema import Fine as FineDB
from .schema import Loan as LoanDB
from .schema import Staff as StaffDB
from .session import retry_on_concurrency, safe_commit, safe_query

logger = logging.getLogger(__name__)


class FineRepository:
    """
    Repository for fines.

    ``stage_late_fee`` adds a fine to the caller's unit of work without
    committing, so a return and its fine commit together. Every other
    mutating method commits its own transaction.
    """

    def __init__(
        self,
        session: Session,
        staff_id: int | None = None,
        config: LibraryConfig | None = None,
    ):
        self.session = session
        self.config = config or get_config()
        if staff_id is not None:
            set_audit_actor(session, staff_id)

    def _to_model(self, fine: FineDB) -> Fine:
        return Fine.model_validate(fine, from_attributes=True)

    def _require(self, fine_id: int) -> FineDB:
        fine = safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB)
                .where(FineDB.fine_id == fine_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none(),
            "Failed to get fine",
        )
        if fine is None:
            raise NotFoundError(f"Fine {fine_id} not found")
        return fine

    def _late_return_fine(self, loan_id: int) -> FineDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(FineDB).where(
                    FineDB.loan_id == loan_id, FineDB.reason == LATE_RETURN_REASON
                )
            ).scalar_one_or_none(),
            "Failed to look up late return fine",
        )

    # Queries

    def get(self, fine_id: int) -> Fine:
        """
        Get a fine by ID.

        Raises:
            NotFoundError: If the fine does not exist
        """
        fine = safe_query(self.session, lambda s: s.get(FineDB, fine_id), "Failed to get fine")
        if fine is None:
            raise NotFoundError(f"Fine {fine_id} not found")
        return self._to_model(fine)

    def get_late_fee(self, loan_id: int) -> Fine | None:
        """The late-return fine for a loan, if one was assessed."""
        fine = self._late_return_fine(loan_id)
        return self._to_model(fine) if fine else None

    def list_fines(self, member_id: int, status: FineStatus | None = None) -> list[Fine]:
        """List a member's fines, oldest first, optionally filtered by status."""
        query = select(FineDB).where(FineDB.member_id == member_id)
        if status is not None:
            query = query.where(FineDB.status == status)
        query = query.order_by(FineDB.issue_date, FineDB.fine_id)

        fines = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to list fines"
        )
        return [self._to_model(f) for f in fines]

    def outstanding_total(self, member_id: int) -> Decimal:
        """Sum of the member's Outstanding fines."""
        total = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.sum(FineDB.amount)).where(
                    FineDB.member_id == member_id,
                    FineDB.status == FineStatus.OUTSTANDING,
                )
            ).scalar(),
            "Failed to total outstanding fines",
        )
        return Decimal(str(total or 0)).quantize(CENTS)

    # Assessment

    def late_fee_for(self, loan: LoanDB) -> Decimal:
        """Late fee owed for a returned loan under the configured policy."""
        if loan.return_date is None:
            raise ValidationError(f"Loan {loan.loan_id} has not been returned")
        return calculate_late_fee(
            loan.due_date,
            loan.return_date,
            self.config.daily_late_fee,
            self.config.grace_period_days,
        )

    def stage_late_fee(self, loan: LoanDB) -> FineDB | None:
        """
        Add the late fee for a returned loan to the current unit of work.

        Returns the existing late-return fine unchanged if there is one, and
        None when nothing is owed. The caller commits.
        """
        existing = self._late_return_fine(loan.loan_id)
        if existing is not None:
            return existing

        amount = self.late_fee_for(loan)
        loan.late_fee = amount
        if amount == 0:
            return None

        fine = FineDB(
            member_id=loan.member_id,
            loan_id=loan.loan_id,
            amount=amount,
            issue_date=loan.return_date.date(),
            status=FineStatus.OUTSTANDING,
            reason=LATE_RETURN_REASON,
        )
        self.session.add(fine)
        logger.info("Late fee of %s staged for loan %s", amount, loan.loan_id)
        return fine

    @trace_operation("assess_late_fee")
    @retry_on_concurrency
    def assess_late_fee(self, loan_id: int) -> Fine | None:
        """
        Assess the late fee for a returned loan.

        Idempotent: a second call for the same loan returns the fine created
        by the first and never charges again.

        Returns:
            The late-return fine, or None when the loan was not late

        Raises:
            NotFoundError: If the loan does not exist
            ValidationError: If the loan is still open
        """
        loan = safe_query(self.session, lambda s: s.get(LoanDB, loan_id), "Failed to get loan")
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")

        fine = self.stage_late_fee(loan)
        assessed = fine is not None and fine.fine_id is None
        safe_commit(self.session, "assess late fee", unique_violation=ConcurrencyError)
        if assessed:
            record_fine_assessed(int(fine.amount * 100))
        return self._to_model(fine) if fine else None

    # Settlement

    @trace_operation("pay_fine")
    @retry_on_concurrency
    def pay(self, fine_id: int, amount: Decimal | None = None) -> Fine:
        """
        Pay a fine in full.

        Args:
            fine_id: Fine to settle
            amount: Amount tendered; when given it must equal the fine amount

        Raises:
            NotFoundError: If the fine does not exist
            InvalidState: If the fine is not Outstanding
            ValidationError: If the amount is not the full fine amount
        """
        fine = self._require(fine_id)
        ensure_fine_transition(fine.status, FineStatus.PAID)

        if amount is not None:
            tendered = Decimal(str(amount)).quantize(CENTS)
            if tendered != Decimal(fine.amount).quantize(CENTS):
                raise ValidationError(
                    f"Fine {fine_id} must be paid in full ({fine.amount}); got {tendered}"
                )

        fine.status = FineStatus.PAID
        fine.payment_date = date.today()
        safe_commit(self.session, "pay fine", unique_violation=ConcurrencyError)
        logger.info("Fine %s paid", fine_id)
        return self._to_model(fine)

    @trace_operation("waive_fine")
    @retry_on_concurrency
    def waive(self, fine_id: int, staff_id: int) -> Fine:
        """
        Waive an outstanding fine on behalf of a staff member.

        The staff member is recorded as the actor of the audit entry. Only
        Outstanding fines can be waived: a Paid fine keeps its payment record,
        and a Waived fine is already settled.

        Raises:
            NotFoundError: If the fine or staff member does not exist
            InvalidState: If the fine was already paid or waived
        """
        staff = safe_query(self.session, lambda s: s.get(StaffDB, staff_id), "Failed to get staff")
        if staff is None:
            raise NotFoundError(f"Staff {staff_id} not found")

        fine = self._require(fine_id)
        ensure_fine_transition(fine.status, FineStatus.WAIVED)

        set_audit_actor(self.session, staff_id)
        fine.status = FineStatus.WAIVED
        safe_commit(self.session, "waive fine", unique_violation=ConcurrencyError)
        logger.info("Fine %s waived by staff %s", fine_id, staff_id)
        return self._to_model(fine)
