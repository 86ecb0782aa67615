"""Test configuration and fixtures for the library circulation server.

1. Isolated test databases - each test gets its own SQLite file
2. Configuration isolation - no LIBRARY_* variables leak into tests
3. Catalog factories - staff, members, books and copies built through the
   repositories, so audit entries exist for them like in production
4. Tool sessions - tool handlers are pointed at the test session
"""

import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import date
from itertools import count
from pathlib import Path

import logfire
import pytest
from sqlalchemy.orm import Session

from library_circulation.config import LibraryConfig, reset_config
from library_circulation.database import (
    BookCreateSchema,
    BookRepository,
    CirculationRepository,
    CopyCreateSchema,
    DatabaseManager,
    MemberCreateSchema,
    MemberRepository,
    StaffCreateSchema,
    StaffRepository,
    reset_db_manager,
    set_audit_actor,
)
from library_circulation.models import Book, BookCopy, Member, Staff

# === Pytest Configuration ===


def pytest_configure(config):
    config.addinivalue_line("markers", "concurrency: test runs writers on several threads")


@pytest.fixture(scope="session", autouse=True)
def local_observability() -> None:
    """Keep spans and metrics in-process."""
    logfire.configure(send_to_logfire=False, console=False)


# === Environment Fixtures ===


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Run every test without LIBRARY_* variables and with fresh singletons."""
    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("LIBRARY_"):
            del os.environ[key]
    reset_config()
    reset_db_manager()

    yield

    reset_db_manager()
    reset_config()
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_config(test_db_path: Path) -> LibraryConfig:
    """Configuration with the default circulation policy and a test database."""
    return LibraryConfig(server_name="test-library", database_path=test_db_path)


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_library.db"


@pytest.fixture
def test_database_url(test_db_path: Path) -> str:
    return f"sqlite:///{test_db_path}"


@pytest.fixture
def db_manager(test_database_url: str) -> Generator[DatabaseManager, None, None]:
    """A database manager over a freshly created schema."""
    manager = DatabaseManager(test_database_url)
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def test_db_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.close()


# === Catalog Fixtures ===


@pytest.fixture
def staff(test_db_session: Session) -> Staff:
    """A librarian, set as the acting staff member on the test session."""
    librarian = StaffRepository(test_db_session).create(
        StaffCreateSchema(
            first_name="Ada",
            last_name="Librarian",
            email="ada@library.example.org",
            position="Librarian",
            hire_date=date(2020, 1, 6),
        )
    )
    set_audit_actor(test_db_session, librarian.staff_id)
    return librarian


@pytest.fixture
def make_member(test_db_session: Session, staff: Staff) -> Callable[..., Member]:
    """Factory for active members with unique emails."""
    numbers = count(1)
    repo = MemberRepository(test_db_session, staff.staff_id)

    def _make(**overrides) -> Member:
        n = next(numbers)
        values = {
            "first_name": "Member",
            "last_name": f"Number{n}",
            "email": f"member{n}@example.com",
            "membership_date": date.today(),
        }
        values.update(overrides)
        return repo.create(MemberCreateSchema(**values))

    return _make


@pytest.fixture
def make_book(test_db_session: Session, staff: Staff) -> Callable[..., Book]:
    """Factory for books with unique ISBNs."""
    numbers = count(1)
    repo = BookRepository(test_db_session, staff.staff_id)

    def _make(**overrides) -> Book:
        n = next(numbers)
        values = {"title": f"Test Book {n}", "isbn": f"978000000{n:04d}"}
        values.update(overrides)
        return repo.create(BookCreateSchema(**values))

    return _make


@pytest.fixture
def make_copy(test_db_session: Session, staff: Staff) -> Callable[[int], BookCopy]:
    """Factory for Available copies of a book."""
    repo = BookRepository(test_db_session, staff.staff_id)

    def _make(book_id: int) -> BookCopy:
        return repo.add_copy(
            book_id, CopyCreateSchema(acquisition_date=date(2023, 5, 1), location="Main Stacks")
        )

    return _make


@pytest.fixture
def member(make_member) -> Member:
    return make_member()


@pytest.fixture
def book(make_book) -> Book:
    return make_book()


@pytest.fixture
def copy(make_copy, book: Book) -> BookCopy:
    return make_copy(book.book_id)


@pytest.fixture
def circulation(test_db_session: Session, staff: Staff) -> CirculationRepository:
    return CirculationRepository(test_db_session, staff.staff_id)


# === Tool Fixtures ===


@pytest.fixture
def mock_get_session(test_db_session: Session, monkeypatch) -> Session:
    """Point the tool handlers at the test session.

    Handlers then see the data the test created, and the test can inspect
    what the handler wrote.
    """

    @contextmanager
    def _mock_get_session():
        yield test_db_session

    monkeypatch.setattr("library_circulation.tools.circulation.get_session", _mock_get_session)
    monkeypatch.setattr("library_circulation.tools.fines.get_session", _mock_get_session)

    return test_db_session
