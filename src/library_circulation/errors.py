"""
Error taxonomy for the library circulation system.

Every failure raised by the repositories is one of these. The categories
tell callers how to react:

- ValidationError: the input breaks a constraint; nothing was written.
- NotFoundError: a referenced id does not exist.
- ConflictError: the current state forbids the operation (copy not
  available, reservation not pending, loan already closed). Never retried.
- ConcurrencyError: another writer changed the row first. Safe to retry
  the whole operation once.
"""


class LibraryError(Exception):
    """Base exception for library operations."""


class ValidationError(LibraryError, ValueError):
    """Raised when input violates a schema or business constraint."""


class NotFoundError(LibraryError):
    """Raised when an entity is not found."""


class ConflictError(LibraryError):
    """Raised when the entity's current state forbids the operation."""


class DuplicateError(ConflictError):
    """Raised when attempting to create a duplicate entity."""


class CopyUnavailable(ConflictError):
    """Raised when a copy cannot be checked out in its current status."""


class MemberIneligible(ConflictError):
    """Raised when a member may not borrow or reserve."""


class LoanAlreadyClosed(ConflictError):
    """Raised when returning or renewing a loan that was already returned."""


class InvalidState(ConflictError):
    """Raised when a state transition is not allowed."""


class DuplicateReservation(ConflictError):
    """Raised when a member already has a pending reservation for a book."""


class ConcurrencyError(LibraryError):
    """Raised when a concurrent writer won the race on a row."""


class AuditError(LibraryError):
    """Raised when an audit entry cannot be written in strict mode."""
