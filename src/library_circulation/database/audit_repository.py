"""
Read access to the audit log.

Entries are written only by the recorder in ``audit``; this repository never
updates or deletes them.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.audit import AuditEntry
from ..models.enums import AuditAction
from .schema import AuditLog
from .session import safe_query


class AuditRepository:
    """Repository for reading audit entries."""

    def __init__(self, session: Session):
        self.session = session

    def _list(self, query) -> list[AuditEntry]:
        rows = safe_query(
            self.session,
            lambda s: s.execute(query.order_by(AuditLog.log_id)).scalars().all(),
            "Failed to read audit log",
        )
        return [AuditEntry.model_validate(row) for row in rows]

    def for_record(self, table_name: str, record_id: int) -> list[AuditEntry]:
        """History of one row, oldest first."""
        return self._list(
            select(AuditLog).where(
                AuditLog.table_name == table_name, AuditLog.record_id == record_id
            )
        )

    def by_actor(self, staff_id: int, since: datetime | None = None) -> list[AuditEntry]:
        """Changes made by one staff member."""
        query = select(AuditLog).where(AuditLog.changed_by == staff_id)
        if since is not None:
            query = query.where(AuditLog.change_timestamp >= since)
        return self._list(query)

    def list_entries(
        self,
        table_name: str | None = None,
        action: AuditAction | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        query = select(AuditLog)
        if table_name is not None:
            query = query.where(AuditLog.table_name == table_name)
        if action is not None:
            query = query.where(AuditLog.action == action)
        return self._list(query.limit(limit))
