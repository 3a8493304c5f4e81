"""
Immutable audit trail for caller facts and leads.

Audit rows are written alongside the change they describe. A failed audit
write is logged and swallowed: the audit trail must never block the
change it records.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from intake.db import DatabaseClient, StoreError
from intake.logging_config import get_logger

logger = get_logger(__name__)

AUDIT_TABLE = "audit_log"


async def log_audit(
    db: DatabaseClient,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    changes: dict[str, Any] | None = None,
) -> None:
    """Write an immutable audit log entry."""
    try:
        await db.insert(AUDIT_TABLE, {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor": actor,
            "changes": {k: serialize_value(v) for k, v in (changes or {}).items()},
        })
    except StoreError as e:
        logger.error("audit_log_error", entity_type=entity_type, entity_id=entity_id, action=action, error=str(e))


def serialize_value(value: Any) -> Any:
    """Ensure a value is JSON-serializable for Supabase jsonb columns."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return str(value)
