"""
Database package for the library circulation system.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and error translation (session.py)
- The audit recorder, registered on import (audit.py)
- Repositories for the catalog, membership, circulation, fines and audit log
"""

from . import audit
from .audit import set_audit_actor
from .audit_repository import AuditRepository
from .author_repository import AuthorCreateSchema, AuthorRepository, AuthorUpdateSchema
from .book_repository import BookCreateSchema, BookRepository, BookUpdateSchema, CopyCreateSchema
from .circulation_repository import CirculationRepository
from .fine_repository import FineRepository
from .member_repository import (
    MemberCreateSchema,
    MemberRepository,
    MemberSearchParams,
    MemberUpdateSchema,
)
from .publisher_repository import PublisherCreateSchema, PublisherRepository
from .repository import BaseRepository, PaginatedResponse, PaginationParams
from .schema import Base
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)
from .staff_repository import StaffCreateSchema, StaffRepository

__all__ = [
    "AuditRepository",
    "AuthorCreateSchema",
    "AuthorRepository",
    "AuthorUpdateSchema",
    "Base",
    "BaseRepository",
    "BookCreateSchema",
    "BookRepository",
    "BookUpdateSchema",
    "CirculationRepository",
    "CopyCreateSchema",
    "DatabaseManager",
    "FineRepository",
    "MemberCreateSchema",
    "MemberRepository",
    "MemberSearchParams",
    "MemberUpdateSchema",
    "PaginatedResponse",
    "PaginationParams",
    "PublisherCreateSchema",
    "PublisherRepository",
    "StaffCreateSchema",
    "StaffRepository",
    "audit",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
]
