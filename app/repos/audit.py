from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AuditEntry

REGISTRATION_CREATED = "EVENT_REGISTRATION_CREATED"
REGISTRATION_CANCELLED = "EVENT_REGISTRATION_CANCELLED"
REGISTRATION_PROMOTED = "EVENT_REGISTRATION_PROMOTED"
REGISTRATION_CHECKED_IN = "EVENT_REGISTRATION_CHECKED_IN"
REGISTRATION_CHECK_IN_UNDONE = "EVENT_REGISTRATION_CHECK_IN_UNDONE"
REGISTRATION_NO_SHOW = "EVENT_REGISTRATION_NO_SHOW"
REGISTRATION_UPDATED = "EVENT_REGISTRATION_UPDATED"


async def add_audit_entry(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    action: str,
    event_id: Optional[uuid.UUID] = None,
    registration_id: Optional[uuid.UUID] = None,
    payload: Optional[dict] = None,
) -> AuditEntry:
    entry = AuditEntry(
        tenant_id=tenant_id,
        action=action,
        event_id=event_id,
        registration_id=registration_id,
        payload=payload or {},
    )
    db.add(entry)
    # no commit here; caller’s transaction should commit
    return entry
