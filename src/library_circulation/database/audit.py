"""
Audit recorder for circulation state changes.

The recorder is a passive subscriber: SQLAlchemy mapper events fire after
each INSERT, UPDATE or DELETE of an audited row, and the recorder appends an
audit_log row through the same connection. Repositories never call it
directly; they only name the acting staff member on their session.

Two modes, chosen per session (default from ``LibraryConfig.audit_strict``):

- strict: the audit row is part of the mutation's transaction; if it cannot
  be written the whole operation rolls back
- best-effort: the audit row is written inside a SAVEPOINT; a failure is
  logged and the mutation still commits
"""

import logging
from datetime import datetime
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import event, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, object_session

from ..config import get_config
from ..errors import AuditError
from ..models.enums import AuditAction
from .schema import AuditLog, BookCopy, Fine, Loan, Member, Reservation

logger = logging.getLogger(__name__)

AUDITED_MODELS = (Member, BookCopy, Loan, Reservation, Fine)

# Bookkeeping columns that change on every write
_IGNORED_COLUMNS = frozenset({"version"})

_ACTOR_KEY = "audit_actor_id"
_STRICT_KEY = "audit_strict"


def set_audit_actor(session: Session, staff_id: int | None, strict: bool | None = None) -> None:
    """
    Name the staff member responsible for changes flushed by this session.

    Args:
        session: Session whose flushes should be attributed
        staff_id: Acting staff member
        strict: Override the configured audit mode for this session
    """
    session.info[_ACTOR_KEY] = staff_id
    if strict is not None:
        session.info[_STRICT_KEY] = strict


def get_audit_actor(session: Session) -> int | None:
    return session.info.get(_ACTOR_KEY)


def _is_strict(session: Session) -> bool:
    if _STRICT_KEY in session.info:
        return session.info[_STRICT_KEY]
    return get_config().audit_strict


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value)


def _row_values(target, mapper) -> dict[str, Any]:
    return {
        attr.key: _jsonable(getattr(target, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in _IGNORED_COLUMNS
    }


def _changed_values(target, mapper) -> tuple[dict[str, Any], dict[str, Any]]:
    """Old and new values of the columns changed in this flush."""
    state = inspect(target)
    old_values: dict[str, Any] = {}
    new_values: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        if attr.key in _IGNORED_COLUMNS:
            continue
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        old_values[attr.key] = _jsonable(history.deleted[0]) if history.deleted else None
        new_values[attr.key] = _jsonable(history.added[0]) if history.added else None
    return old_values, new_values


def _record(
    connection,
    mapper,
    target,
    action: AuditAction,
    old_values: dict[str, Any] | None,
    new_values: dict[str, Any] | None,
) -> None:
    session = object_session(target)
    table_name = mapper.local_table.name
    record_id = mapper.primary_key_from_instance(target)[0]
    strict = _is_strict(session) if session is not None else get_config().audit_strict
    actor_id = get_audit_actor(session) if session is not None else None

    if actor_id is None:
        if strict:
            raise AuditError(f"No acting staff member for {action.value} on {table_name}")
        logger.warning(
            "Audit entry skipped: no actor for %s %s #%s", action.value, table_name, record_id
        )
        return

    stmt = AuditLog.__table__.insert().values(
        table_name=table_name,
        record_id=record_id,
        action=action,
        changed_by=actor_id,
        change_timestamp=datetime.now(),
        old_values=old_values,
        new_values=new_values,
    )

    if strict:
        connection.execute(stmt)
        return

    try:
        with connection.begin_nested():
            connection.execute(stmt)
    except SQLAlchemyError:
        logger.warning(
            "Audit entry for %s %s #%s not recorded",
            action.value,
            table_name,
            record_id,
            exc_info=True,
        )


def _after_insert(mapper, connection, target) -> None:
    _record(connection, mapper, target, AuditAction.INSERT, None, _row_values(target, mapper))


def _after_update(mapper, connection, target) -> None:
    old_values, new_values = _changed_values(target, mapper)
    if not new_values:
        return
    _record(connection, mapper, target, AuditAction.UPDATE, old_values, new_values)


def _after_delete(mapper, connection, target) -> None:
    _record(connection, mapper, target, AuditAction.DELETE, _row_values(target, mapper), None)


for _model in AUDITED_MODELS:
    event.listen(_model, "after_insert", _after_insert)
    event.listen(_model, "after_update", _after_update)
    event.listen(_model, "after_delete", _after_delete)
