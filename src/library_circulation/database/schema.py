"""
SQLAlchemy database schema for the library circulation system.

Column types, lengths, enumerations, defaults and CHECK constraints follow the
library's relational schema. A few columns are added for the circulation
engine:

1. ``version`` on copies, loans, reservations and fines - optimistic locking,
   so a lost compare-and-swap surfaces as a stale-data error
2. ``copy_id``, ``fulfilled_date`` and ``loan_id`` on reservations - the copy
   bound to a fulfilled reservation and the loan that claimed it
3. ``renewal_count`` on loans - renewals are capped by configuration
4. ``deleted_at`` on members - soft delete keeps loan and fine history

Invariants that are not plain column constraints are partial unique indexes:
at most one open loan per copy, at most one open claim per copy, at most one
pending reservation per member and book, and at most one late-return fine
per loan.
"""

from datetime import date

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.sql import func

from ..models.enums import (
    AuditAction,
    ContributionType,
    CopyCondition,
    CopyStatus,
    FineStatus,
    MembershipStatus,
    ReservationStatus,
)

Base = declarative_base()

LATE_RETURN_REASON = "late return"


def _enum(enum_cls, name: str) -> Enum:
    """Enum column type that stores the literal values, not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        create_constraint=True,
        validate_strings=True,
    )


def _partial(where: str) -> dict:
    """Dialect keyword arguments for a partial index predicate."""
    return {"sqlite_where": text(where), "postgresql_where": text(where)}


class Member(Base):
    """
    Members table - people who can borrow books.

    Members are never physically deleted while history references them;
    ``deleted_at`` marks a soft-deleted account.
    """

    __tablename__ = "members"

    member_id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=False, unique=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    membership_date = Column(Date, nullable=False)
    membership_status = Column(
        _enum(MembershipStatus, "membership_status"), default=MembershipStatus.ACTIVE
    )
    deleted_at = Column(DateTime, nullable=True)

    loans = relationship("Loan", back_populates="member")
    reservations = relationship("Reservation", back_populates="member")
    fines = relationship("Fine", back_populates="member")

    __table_args__ = (
        Index("idx_members_email", "email"),
        CheckConstraint("email LIKE '%@%.%'", name="chk_email"),
    )

    @property
    def is_active(self) -> bool:
        """Active members that are not soft-deleted may borrow and reserve."""
        return self.deleted_at is None and self.membership_status == MembershipStatus.ACTIVE


class Author(Base):
    """Authors table."""

    __tablename__ = "authors"

    author_id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    birth_year = Column(Integer, nullable=True)
    death_year = Column(Integer, nullable=True)
    nationality = Column(String(50), nullable=True)
    biography = Column(Text, nullable=True)

    books = relationship("BookAuthor", back_populates="author", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("death_year IS NULL OR birth_year < death_year", name="chk_years"),
    )

    @validates("death_year")
    def validate_death_year(self, key, value):  # noqa: ARG002
        """Ensure death year is after birth year."""
        if value is not None and self.birth_year is not None and value <= self.birth_year:
            raise ValueError("Death year must be after birth year")
        return value


class Publisher(Base):
    """Publishers table."""

    __tablename__ = "publishers"

    publisher_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    address = Column(Text, nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)
    website = Column(String(100), nullable=True)
    founding_year = Column(Integer, nullable=True)

    books = relationship("Book", back_populates="publisher")


class Book(Base):
    """
    Books table - catalog metadata.

    A book owns its physical copies; deleting a book deletes its copies.
    """

    __tablename__ = "books"

    book_id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    isbn = Column(String(20), nullable=False, unique=True)
    publisher_id = Column(
        Integer, ForeignKey("publishers.publisher_id", ondelete="SET NULL"), nullable=True
    )
    publication_year = Column(Integer, nullable=True)
    edition = Column(Integer, default=1)
    category = Column(String(50), nullable=True)
    language = Column(String(30), default="English")
    page_count = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)

    publisher = relationship("Publisher", back_populates="books")
    authors = relationship(
        "BookAuthor", back_populates="book", cascade="all, delete-orphan", passive_deletes=True
    )
    copies = relationship(
        "BookCopy", back_populates="book", cascade="all, delete-orphan", passive_deletes=True
    )
    reservations = relationship("Reservation", back_populates="book")

    __table_args__ = (
        Index("idx_books_title", "title"),
        Index("idx_books_isbn", "isbn"),
        CheckConstraint("LENGTH(isbn) >= 10", name="chk_isbn"),
    )


class BookAuthor(Base):
    """Book-author association (many-to-many) with the author's role."""

    __tablename__ = "book_authors"

    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), primary_key=True)
    author_id = Column(
        Integer, ForeignKey("authors.author_id", ondelete="CASCADE"), primary_key=True
    )
    contribution_type = Column(
        _enum(ContributionType, "contribution_type"), default=ContributionType.PRIMARY
    )

    book = relationship("Book", back_populates="authors")
    author = relationship("Author", back_populates="books")


class BookCopy(Base):
    """
    Book copies table - the unit of lending.

    ``status`` is only ever changed through the transition table in
    ``models.enums``; the version column turns every status write into a
    compare-and-swap.
    """

    __tablename__ = "book_copies"

    copy_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), nullable=False)
    acquisition_date = Column(Date, nullable=False)
    condition = Column(_enum(CopyCondition, "copy_condition"), default=CopyCondition.GOOD)
    location = Column(String(50), nullable=False)
    status = Column(_enum(CopyStatus, "copy_status"), default=CopyStatus.AVAILABLE)
    version = Column(Integer, nullable=False)

    book = relationship("Book", back_populates="copies")
    loans = relationship("Loan", back_populates="copy")

    __table_args__ = (Index("idx_copies_book_status", "book_id", "status"),)
    __mapper_args__ = {"version_id_col": version}


class Loan(Base):
    """
    Loans table - one member borrowing one copy.

    A loan is open while ``return_date`` is NULL; the partial unique index
    allows a single open loan per copy.
    """

    __tablename__ = "loans"

    loan_id = Column(Integer, primary_key=True, autoincrement=True)
    copy_id = Column(
        Integer, ForeignKey("book_copies.copy_id", ondelete="RESTRICT"), nullable=False
    )
    member_id = Column(
        Integer, ForeignKey("members.member_id", ondelete="RESTRICT"), nullable=False
    )
    checkout_date = Column(DateTime, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(DateTime, nullable=True)
    late_fee = Column(Numeric(10, 2), default=0)
    renewal_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    copy = relationship("BookCopy", back_populates="loans")
    member = relationship("Member", back_populates="loans")
    fines = relationship("Fine", back_populates="loan")

    __table_args__ = (
        Index("idx_loans_dates", "checkout_date", "due_date", "return_date"),
        Index("idx_loans_member", "member_id"),
        Index("uq_loans_open_copy", "copy_id", unique=True, **_partial("return_date IS NULL")),
        CheckConstraint(
            "due_date > DATE(checkout_date) AND "
            "(return_date IS NULL OR return_date >= checkout_date)",
            name="chk_dates",
        ),
        CheckConstraint("renewal_count >= 0", name="chk_renewal_count"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def is_overdue(self, today: date) -> bool:
        return self.return_date is None and today > self.due_date


class Reservation(Base):
    """
    Reservations table - a member's claim on a book (not a specific copy).

    Pending reservations are served FIFO by ``reservation_date``. Fulfilling
    one binds a copy (``copy_id``); checking that copy out records the claim
    in ``loan_id``.
    """

    __tablename__ = "reservations"

    reservation_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), nullable=False)
    member_id = Column(
        Integer, ForeignKey("members.member_id", ondelete="RESTRICT"), nullable=False
    )
    reservation_date = Column(DateTime, nullable=False, default=func.now())
    expiration_date = Column(DateTime, nullable=False)
    status = Column(
        _enum(ReservationStatus, "reservation_status"), default=ReservationStatus.PENDING
    )
    copy_id = Column(
        Integer, ForeignKey("book_copies.copy_id", ondelete="SET NULL"), nullable=True
    )
    fulfilled_date = Column(DateTime, nullable=True)
    loan_id = Column(Integer, ForeignKey("loans.loan_id", ondelete="SET NULL"), nullable=True)
    version = Column(Integer, nullable=False)

    book = relationship("Book", back_populates="reservations")
    member = relationship("Member", back_populates="reservations")
    copy = relationship("BookCopy")

    __table_args__ = (
        Index("idx_reservations_queue", "book_id", "status", "reservation_date"),
        Index("idx_reservations_member", "member_id"),
        Index(
            "uq_reservations_open_claim",
            "copy_id",
            unique=True,
            **_partial("status = 'Fulfilled' AND loan_id IS NULL"),
        ),
        Index(
            "uq_reservations_pending_member",
            "book_id",
            "member_id",
            unique=True,
            **_partial("status = 'Pending'"),
        ),
        CheckConstraint("expiration_date > reservation_date", name="chk_reservation_dates"),
    )
    __mapper_args__ = {"version_id_col": version}


class Fine(Base):
    """Fines table - monetary penalties owed by a member."""

    __tablename__ = "fines"

    fine_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(
        Integer, ForeignKey("members.member_id", ondelete="RESTRICT"), nullable=False
    )
    loan_id = Column(Integer, ForeignKey("loans.loan_id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    issue_date = Column(Date, nullable=False)
    payment_date = Column(Date, nullable=True)
    status = Column(_enum(FineStatus, "fine_status"), default=FineStatus.OUTSTANDING)
    reason = Column(String(255), nullable=False)
    version = Column(Integer, nullable=False)

    member = relationship("Member", back_populates="fines")
    loan = relationship("Loan", back_populates="fines")

    __table_args__ = (
        Index("idx_fines_status", "status"),
        Index(
            "uq_fines_late_return_loan",
            "loan_id",
            unique=True,
            **_partial(f"reason = '{LATE_RETURN_REASON}'"),
        ),
        CheckConstraint("amount >= 0", name="chk_fine_amount"),
    )
    __mapper_args__ = {"version_id_col": version}


class Staff(Base):
    """Staff table - library employees; every audit entry names one."""

    __tablename__ = "staff"

    staff_id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=False, unique=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    position = Column(String(50), nullable=False)
    hire_date = Column(Date, nullable=False)
    salary = Column(Numeric(12, 2), nullable=True)
    supervisor_id = Column(
        Integer, ForeignKey("staff.staff_id", ondelete="SET NULL"), nullable=True
    )

    supervisor = relationship("Staff", remote_side=[staff_id], back_populates="reports")
    reports = relationship("Staff", back_populates="supervisor")

    __table_args__ = (
        CheckConstraint("email LIKE '%@%.%'", name="chk_staff_email"),
        CheckConstraint("salary >= 0", name="chk_salary"),
    )


class AuditLog(Base):
    """
    Audit log table - append-only record of state changes.

    Rows are written by the audit recorder during flush and are never
    updated or deleted by library code.
    """

    __tablename__ = "audit_log"

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(50), nullable=False)
    record_id = Column(Integer, nullable=False)
    action = Column(_enum(AuditAction, "audit_action"), nullable=False)
    changed_by = Column(
        Integer, ForeignKey("staff.staff_id", ondelete="RESTRICT"), nullable=False
    )
    change_timestamp = Column(DateTime, nullable=False, default=func.now())
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_audit_record", "table_name", "record_id"),
        Index("idx_audit_changed_by", "changed_by"),
    )
