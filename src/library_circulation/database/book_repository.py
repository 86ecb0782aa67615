"""
Book repository for the library catalog.

This repository provides:

1. **Catalog entries**: books with unique ISBNs, optionally tied to a publisher
2. **Authorship**: linking authors to books with their contribution type
3. **Copies**: adding physical copies and reading their lending status

Copy status is never changed here; the circulation engine owns it.
"""

from datetime import date

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..errors import DuplicateError, NotFoundError
from ..models.book import Book, BookAuthorLink, BookCopy, Isbn
from ..models.enums import ContributionType, CopyCondition, CopyStatus
from .audit import set_audit_actor
from .repository import BaseRepository
from .schema import Author as AuthorDB
from .schema import Book as BookDB
from .schema import BookAuthor as BookAuthorDB
from .schema import BookCopy as CopyDB
from .schema import Publisher as PublisherDB
from .session import safe_commit, safe_query


class BookCreateSchema(BaseModel):
    """Schema for cataloging a new book."""

    title: str = Field(..., min_length=1, max_length=255)
    isbn: Isbn
    publisher_id: int | None = None
    publication_year: int | None = None
    edition: int = Field(default=1, ge=1)
    category: str | None = Field(None, max_length=50)
    language: str = Field(default="English", max_length=30)
    page_count: int | None = Field(None, ge=1)
    description: str | None = None


class BookUpdateSchema(BaseModel):
    """Schema for updating a book - all fields optional."""

    title: str | None = Field(None, min_length=1, max_length=255)
    publisher_id: int | None = None
    publication_year: int | None = None
    edition: int | None = Field(None, ge=1)
    category: str | None = Field(None, max_length=50)
    language: str | None = Field(None, max_length=30)
    page_count: int | None = Field(None, ge=1)
    description: str | None = None


class CopyCreateSchema(BaseModel):
    """Schema for adding a physical copy."""

    acquisition_date: date
    location: str = Field(..., min_length=1, max_length=50)
    condition: CopyCondition = CopyCondition.GOOD


class BookRepository(BaseRepository[BookDB, BookCreateSchema, BookUpdateSchema, Book]):
    """Repository for books and their copies."""

    def __init__(self, session: Session, staff_id: int | None = None):
        super().__init__(session)
        if staff_id is not None:
            set_audit_actor(session, staff_id)

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return Book

    def create(self, data: BookCreateSchema) -> Book:
        """
        Catalog a new book.

        Raises:
            DuplicateError: If the ISBN is already cataloged
            NotFoundError: If the publisher does not exist
        """
        isbn = data.isbn.strip()
        if self.get_by_isbn(isbn) is not None:
            raise DuplicateError(f"Book with ISBN {isbn} already exists")
        publisher_id = data.publisher_id
        if publisher_id is not None and self.session.get(PublisherDB, publisher_id) is None:
            raise NotFoundError(f"Publisher {publisher_id} not found")
        return super().create(data.model_copy(update={"isbn": isbn}))

    def get_by_isbn(self, isbn: str) -> Book | None:
        book = safe_query(
            self.session,
            lambda s: s.execute(select(BookDB).where(BookDB.isbn == isbn)).scalar_one_or_none(),
            "Failed to get book by ISBN",
        )
        return self._to_response_model(book) if book else None

    def search_by_title(self, title: str, limit: int = 20) -> list[Book]:
        term = f"%{title}%"
        books = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB).where(BookDB.title.ilike(term)).order_by(BookDB.title).limit(limit)
            )
            .scalars()
            .all(),
            "Failed to search books",
        )
        return [self._to_response_model(b) for b in books]

    # Authorship

    def link_author(
        self,
        book_id: int,
        author_id: int,
        contribution_type: ContributionType = ContributionType.PRIMARY,
    ) -> BookAuthorLink:
        """
        Record an author's contribution to a book.

        Raises:
            NotFoundError: If the book or author does not exist
            DuplicateError: If the author is already linked to the book
        """
        self._require(book_id)
        if self.session.get(AuthorDB, author_id) is None:
            raise NotFoundError(f"Author {author_id} not found")
        if self.session.get(BookAuthorDB, (book_id, author_id)) is not None:
            raise DuplicateError(f"Author {author_id} is already linked to book {book_id}")

        link = BookAuthorDB(
            book_id=book_id, author_id=author_id, contribution_type=contribution_type
        )
        self.session.add(link)
        safe_commit(self.session, "link author")
        return BookAuthorLink.model_validate(link)

    def list_authors(self, book_id: int) -> list[BookAuthorLink]:
        links = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookAuthorDB)
                .where(BookAuthorDB.book_id == book_id)
                .order_by(BookAuthorDB.author_id)
            )
            .scalars()
            .all(),
            "Failed to list book authors",
        )
        return [BookAuthorLink.model_validate(link) for link in links]

    # Copies

    def add_copy(self, book_id: int, data: CopyCreateSchema) -> BookCopy:
        """
        Add a physical copy of a book; new copies are Available.

        Raises:
            NotFoundError: If the book does not exist
        """
        self._require(book_id)
        copy = CopyDB(
            book_id=book_id,
            acquisition_date=data.acquisition_date,
            location=data.location,
            condition=data.condition,
            status=CopyStatus.AVAILABLE,
        )
        self.session.add(copy)
        safe_commit(self.session, "add copy")
        self.session.refresh(copy)
        return BookCopy.model_validate(copy)

    def get_copy(self, copy_id: int) -> BookCopy:
        """
        Get a copy by ID.

        Raises:
            NotFoundError: If the copy does not exist
        """
        copy = safe_query(self.session, lambda s: s.get(CopyDB, copy_id), "Failed to get copy")
        if copy is None:
            raise NotFoundError(f"Copy {copy_id} not found")
        return BookCopy.model_validate(copy)

    def list_copies(self, book_id: int, status: CopyStatus | None = None) -> list[BookCopy]:
        query = select(CopyDB).where(CopyDB.book_id == book_id)
        if status is not None:
            query = query.where(CopyDB.status == status)
        copies = safe_query(
            self.session,
            lambda s: s.execute(query.order_by(CopyDB.copy_id)).scalars().all(),
            "Failed to list copies",
        )
        return [BookCopy.model_validate(c) for c in copies]

    def count_available(self, book_id: int) -> int:
        count = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(CopyDB)
                .where(CopyDB.book_id == book_id, CopyDB.status == CopyStatus.AVAILABLE)
            ).scalar(),
            "Failed to count available copies",
        )
        return count or 0
