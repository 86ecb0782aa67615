"""
Book and copy models for the library catalog.

A Book is catalog metadata. Each physical copy is a BookCopy and is the
unit of lending: loans and fulfilled reservations point at copies, never at
books.
"""

from datetime import date
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import ContributionType, CopyCondition, CopyStatus

Isbn = Annotated[
    str,
    Field(
        min_length=10,
        max_length=20,
        description="ISBN-10 or ISBN-13, hyphens allowed",
        examples=["9780061120084", "0-06-112008-1"],
    ),
]


class Book(BaseModel):
    """Represents a catalog entry."""

    book_id: int = Field(..., ge=1)

    title: str = Field(..., min_length=1, max_length=255, examples=["To Kill a Mockingbird"])

    isbn: Isbn

    publisher_id: int | None = None

    publication_year: int | None = Field(None, examples=[1960])

    edition: int | None = Field(default=1, ge=1)

    category: str | None = Field(None, max_length=50, examples=["Fiction"])

    language: str | None = Field(default="English", max_length=30)

    page_count: int | None = Field(None, ge=1)

    description: str | None = None

    @field_validator("isbn")
    @classmethod
    def strip_isbn(cls, v: str) -> str:
        return v.strip()

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "book_id": 1,
                "title": "To Kill a Mockingbird",
                "isbn": "9780061120084",
                "publication_year": 1960,
                "edition": 1,
                "category": "Fiction",
                "language": "English",
            }
        },
    )


class BookAuthorLink(BaseModel):
    """An author's contribution to a book."""

    book_id: int
    author_id: int
    contribution_type: ContributionType = ContributionType.PRIMARY

    model_config = ConfigDict(from_attributes=True)


class BookCopy(BaseModel):
    """
    Represents one physical copy.

    ``status`` moves only along the transitions in ``models.enums``:
    Available, Checked Out and Reserved through circulation, Lost and
    Damaged through staff action.
    """

    copy_id: int = Field(..., ge=1)

    book_id: int = Field(..., ge=1)

    acquisition_date: date

    condition: CopyCondition = CopyCondition.GOOD

    location: str = Field(..., min_length=1, max_length=50, examples=["Main Stacks A3"])

    status: CopyStatus = CopyStatus.AVAILABLE

    @property
    def is_available(self) -> bool:
        return self.status == CopyStatus.AVAILABLE

    model_config = ConfigDict(from_attributes=True)
