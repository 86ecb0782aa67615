"""
Author and publisher models for the library catalog.

Authors are linked to books through the book_authors association, which
also records each author's contribution type.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .member import EmailAddress, PhoneNumber


class Author(BaseModel):
    """Represents an author in the library catalog."""

    author_id: int = Field(..., ge=1)

    first_name: str = Field(..., min_length=1, max_length=50, examples=["Harper"])

    last_name: str = Field(..., min_length=1, max_length=50, examples=["Lee"])

    birth_year: int | None = Field(None, examples=[1926])

    death_year: int | None = Field(None, examples=[2016])

    nationality: str | None = Field(None, max_length=50, examples=["American"])

    biography: str | None = None

    @model_validator(mode="after")
    def validate_years(self) -> "Author":
        """Ensure death year comes after birth year."""
        if (
            self.death_year is not None
            and self.birth_year is not None
            and self.death_year <= self.birth_year
        ):
            raise ValueError("Death year must be after birth year")
        return self

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_living(self) -> bool:
        return self.death_year is None

    model_config = ConfigDict(from_attributes=True)


class Publisher(BaseModel):
    """Represents a publisher."""

    publisher_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=100, examples=["Penguin Books"])
    address: str | None = None
    phone: PhoneNumber | None = None
    email: EmailAddress | None = None
    website: str | None = Field(None, max_length=100)
    founding_year: int | None = None

    model_config = ConfigDict(from_attributes=True)
