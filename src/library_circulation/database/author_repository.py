"""
Author repository for the library catalog.

Authors are plain reference data: create, read, update, list, and a name
search used when linking authors to books.
"""

from pydantic import BaseModel, Field, model_validator
from sqlalchemy import or_, select

from ..models.author import Author
from .repository import BaseRepository
from .schema import Author as AuthorDB
from .session import safe_query


class AuthorCreateSchema(BaseModel):
    """Schema for creating a new author."""

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    birth_year: int | None = None
    death_year: int | None = None
    nationality: str | None = Field(None, max_length=50)
    biography: str | None = None

    @model_validator(mode="after")
    def validate_years(self) -> "AuthorCreateSchema":
        if (
            self.death_year is not None
            and self.birth_year is not None
            and self.death_year <= self.birth_year
        ):
            raise ValueError("Death year must be after birth year")
        return self


class AuthorUpdateSchema(BaseModel):
    """Schema for updating an author - all fields optional."""

    first_name: str | None = Field(None, min_length=1, max_length=50)
    last_name: str | None = Field(None, min_length=1, max_length=50)
    birth_year: int | None = None
    death_year: int | None = None
    nationality: str | None = Field(None, max_length=50)
    biography: str | None = None


class AuthorRepository(BaseRepository[AuthorDB, AuthorCreateSchema, AuthorUpdateSchema, Author]):
    """Repository for author data access."""

    @property
    def model_class(self):
        return AuthorDB

    @property
    def response_schema(self):
        return Author

    def search(self, name: str, limit: int = 20) -> list[Author]:
        """Find authors whose first or last name contains ``name``."""
        term = f"%{name}%"
        authors = safe_query(
            self.session,
            lambda s: s.execute(
                select(AuthorDB)
                .where(or_(AuthorDB.first_name.ilike(term), AuthorDB.last_name.ilike(term)))
                .order_by(AuthorDB.last_name, AuthorDB.first_name)
                .limit(limit)
            )
            .scalars()
            .all(),
            "Failed to search authors",
        )
        return [self._to_response_model(a) for a in authors]
