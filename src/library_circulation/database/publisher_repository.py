"""Publisher repository for the library catalog."""

from pydantic import BaseModel, Field
from sqlalchemy import func, select

from ..errors import DuplicateError
from ..models.author import Publisher
from ..models.member import EmailAddress, PhoneNumber
from .repository import BaseRepository
from .schema import Publisher as PublisherDB
from .session import safe_query


class PublisherCreateSchema(BaseModel):
    """Schema for creating a new publisher."""

    name: str = Field(..., min_length=1, max_length=100)
    address: str | None = None
    phone: PhoneNumber | None = None
    email: EmailAddress | None = None
    website: str | None = Field(None, max_length=100)
    founding_year: int | None = None


class PublisherUpdateSchema(BaseModel):
    """Schema for updating a publisher - all fields optional."""

    name: str | None = Field(None, min_length=1, max_length=100)
    address: str | None = None
    phone: PhoneNumber | None = None
    email: EmailAddress | None = None
    website: str | None = Field(None, max_length=100)
    founding_year: int | None = None


class PublisherRepository(
    BaseRepository[PublisherDB, PublisherCreateSchema, PublisherUpdateSchema, Publisher]
):
    """Repository for publisher data access."""

    @property
    def model_class(self):
        return PublisherDB

    @property
    def response_schema(self):
        return Publisher

    def create(self, data: PublisherCreateSchema) -> Publisher:
        """
        Create a publisher.

        Raises:
            DuplicateError: If a publisher with the same name exists
        """
        if self.get_by_name(data.name) is not None:
            raise DuplicateError(f"Publisher '{data.name}' already exists")
        return super().create(data)

    def get_by_name(self, name: str) -> Publisher | None:
        publisher = safe_query(
            self.session,
            lambda s: s.execute(
                select(PublisherDB).where(func.lower(PublisherDB.name) == name.lower())
            ).scalar_one_or_none(),
            "Failed to get publisher by name",
        )
        return self._to_response_model(publisher) if publisher else None
