"""Audit log entry model."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from .enums import AuditAction


class AuditEntry(BaseModel):
    """One recorded change to an audited row."""

    log_id: int
    table_name: str
    record_id: int
    action: AuditAction
    changed_by: int
    change_timestamp: datetime
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None

    model_config = ConfigDict(from_attributes=True)
