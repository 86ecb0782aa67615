"""
Sample data for the library circulation system.

Generates a small, realistic library with Faker: staff, publishers, authors,
books with several copies each, members, and a circulation history created
through the circulation engine itself, so loans, late fees, reservations and
audit entries are all consistent with each other.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal

from faker import Faker
from sqlalchemy.orm import Session

from ..errors import LibraryError
from ..models.enums import ContributionType, CopyCondition, MembershipStatus
from .audit import set_audit_actor
from .author_repository import AuthorCreateSchema, AuthorRepository
from .book_repository import BookCreateSchema, BookRepository, CopyCreateSchema
from .circulation_repository import CirculationRepository
from .member_repository import MemberCreateSchema, MemberRepository
from .publisher_repository import PublisherCreateSchema, PublisherRepository
from .staff_repository import StaffCreateSchema, StaffRepository

logger = logging.getLogger(__name__)

CATEGORIES = [
    "Fiction",
    "Mystery",
    "Science Fiction",
    "Fantasy",
    "Biography",
    "History",
    "Science",
    "Children's",
]

LOCATIONS = ["Main Stacks", "Reference", "Children's Wing", "Annex"]


@dataclass
class SeedSummary:
    """Counts of the records created by ``seed_database``."""

    staff: int = 0
    publishers: int = 0
    authors: int = 0
    books: int = 0
    copies: int = 0
    members: int = 0
    loans: int = 0
    open_loans: int = 0
    reservations: int = 0
    refused: list[str] = field(default_factory=list)


def generate_isbn13(rng: random.Random) -> str:
    """Generate a valid ISBN-13."""
    body = "978" + "".join(str(rng.randint(0, 9)) for _ in range(9))
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(body))
    return f"{body}{(10 - total % 10) % 10}"


def _phone(fake: Faker) -> str:
    return fake.numerify("###-###-####")


def seed_database(
    session: Session,
    num_members: int = 40,
    num_books: int = 60,
    num_loans: int = 80,
    seed: int = 42,
) -> SeedSummary:
    """
    Populate an empty database with sample data.

    The first staff member is the audit actor for everything created here.
    Business refusals during the circulation history (for example a member
    who went over the fine limit) are counted, not raised.
    """
    fake = Faker()
    Faker.seed(seed)
    rng = random.Random(seed)
    summary = SeedSummary()
    today = date.today()

    staff_repo = StaffRepository(session)
    head = staff_repo.create(
        StaffCreateSchema(
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            email=fake.unique.company_email(),
            phone=_phone(fake),
            position="Head Librarian",
            hire_date=fake.date_between(start_date="-15y", end_date="-5y"),
            salary=Decimal("68000.00"),
        )
    )
    staff_ids = [head.staff_id]
    for position in ("Librarian", "Librarian", "Circulation Clerk"):
        clerk = staff_repo.create(
            StaffCreateSchema(
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                email=fake.unique.company_email(),
                phone=_phone(fake),
                position=position,
                hire_date=fake.date_between(start_date="-5y", end_date="-30d"),
                salary=Decimal(rng.randrange(38000, 55000, 500)),
                supervisor_id=head.staff_id,
            )
        )
        staff_ids.append(clerk.staff_id)
    summary.staff = len(staff_ids)
    set_audit_actor(session, head.staff_id)

    publisher_repo = PublisherRepository(session)
    publisher_ids = []
    for _ in range(6):
        publisher = publisher_repo.create(
            PublisherCreateSchema(
                name=f"{fake.unique.last_name()} {rng.choice(['Press', 'Books', 'House'])}",
                address=fake.address().replace("\n", ", "),
                website=fake.url(),
                founding_year=rng.randint(1850, 2010),
            )
        )
        publisher_ids.append(publisher.publisher_id)
    summary.publishers = len(publisher_ids)

    author_repo = AuthorRepository(session)
    author_ids = []
    for _ in range(max(10, num_books // 3)):
        birth_year = rng.randint(1880, 1995)
        death_year = rng.randint(birth_year + 40, 2020) if birth_year < 1945 else None
        author = author_repo.create(
            AuthorCreateSchema(
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                birth_year=birth_year,
                death_year=death_year,
                nationality=fake.country()[:50],
                biography=fake.text(max_nb_chars=300),
            )
        )
        author_ids.append(author.author_id)
    summary.authors = len(author_ids)

    book_repo = BookRepository(session)
    copies_by_book: dict[int, list[int]] = {}
    for _ in range(num_books):
        book = book_repo.create(
            BookCreateSchema(
                title=fake.catch_phrase().title()[:255],
                isbn=generate_isbn13(rng),
                publisher_id=rng.choice(publisher_ids),
                publication_year=rng.randint(1950, today.year),
                category=rng.choice(CATEGORIES),
                page_count=rng.randint(90, 900),
                description=fake.text(max_nb_chars=400),
            )
        )
        for i, author_id in enumerate(rng.sample(author_ids, rng.choice([1, 1, 1, 2]))):
            book_repo.link_author(
                book.book_id,
                author_id,
                ContributionType.PRIMARY if i == 0 else ContributionType.SECONDARY,
            )
        copies_by_book[book.book_id] = []
        for _ in range(rng.randint(1, 4)):
            copy = book_repo.add_copy(
                book.book_id,
                CopyCreateSchema(
                    acquisition_date=fake.date_between(start_date="-10y", end_date="-1y"),
                    location=rng.choice(LOCATIONS),
                    condition=rng.choice([CopyCondition.NEW, CopyCondition.GOOD, CopyCondition.FAIR]),
                ),
            )
            copies_by_book[book.book_id].append(copy.copy_id)
    summary.books = len(copies_by_book)
    summary.copies = sum(len(c) for c in copies_by_book.values())

    member_repo = MemberRepository(session)
    member_ids = []
    for _ in range(num_members):
        member = member_repo.create(
            MemberCreateSchema(
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                email=fake.unique.email(),
                phone=_phone(fake),
                address=fake.address().replace("\n", ", "),
                date_of_birth=fake.date_of_birth(minimum_age=8, maximum_age=85),
                membership_date=fake.date_between(start_date="-300d", end_date="-60d"),
            )
        )
        member_ids.append(member.member_id)
    summary.members = len(member_ids)

    # A few members are suspended once their history exists
    suspended = set(rng.sample(member_ids, max(1, num_members // 10)))

    circulation = CirculationRepository(session, rng.choice(staff_ids))
    all_copies = [c for copies in copies_by_book.values() for c in copies]
    for _ in range(num_loans):
        copy_id = rng.choice(all_copies)
        member_id = rng.choice(member_ids)
        checkout_time = fake.date_time_between(start_date="-50d", end_date="-1d")
        try:
            loan = circulation.check_out(copy_id, member_id, checkout_time=checkout_time)
        except LibraryError as e:
            summary.refused.append(f"checkout copy {copy_id}: {e}")
            continue
        summary.loans += 1

        # Most historical loans come back, some of them late
        returned_at = checkout_time + timedelta(days=rng.randint(1, 24))
        if returned_at < datetime.now() and rng.random() < 0.75:
            circulation.return_copy(loan.loan_id, returned_at)
        else:
            summary.open_loans += 1

    for book_id, copies in copies_by_book.items():
        if rng.random() > 0.2:
            continue
        for member_id in rng.sample(member_ids, rng.randint(1, 3)):
            try:
                circulation.reserve(book_id, member_id)
            except LibraryError as e:
                summary.refused.append(f"reserve book {book_id}: {e}")
                continue
            summary.reservations += 1

    for member_id in suspended:
        member_repo.set_status(member_id, MembershipStatus.SUSPENDED)

    logger.info(
        "Seeded %d books (%d copies), %d members, %d loans (%d open), %d reservations",
        summary.books,
        summary.copies,
        summary.members,
        summary.loans,
        summary.open_loans,
        summary.reservations,
    )
    return summary
