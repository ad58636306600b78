from __future__ import annotations
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import RegistrationStatus
from ..models import Event, Registration
from ..repos import audit
from ..repos.registrations import TenantRegistrationRepo


# Strict FIFO: only the head of the waitlist (position 1) is ever promoted.
# Must run inside the occurrence's critical section; the caller commits.
async def promote_next(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    event: Event,
    occ_key: str,
) -> Optional[Registration]:
    if not event.waitlist_enabled:
        return None

    regs = TenantRegistrationRepo(db, tenant_id)

    # a slot must actually be free; capacity may have been lowered after people registered
    if event.capacity is not None:
        active = await regs.count_active(event.id, occ_key)
        if active >= event.capacity:
            return None

    head = await regs.waitlist_head(event.id, occ_key)
    if head is None:
        return None

    # capture old position BEFORE clearing it
    old_pos = head.waitlist_position
    head.status = RegistrationStatus.REGISTERED
    head.waitlist_position = None
    await db.flush()

    # collapse positions > old_pos so they remain contiguous (1..N)
    await regs.collapse_waitlist_after(event.id, occ_key, old_pos)

    await audit.add_audit_entry(
        db,
        tenant_id=tenant_id,
        action=audit.REGISTRATION_PROMOTED,
        event_id=event.id,
        registration_id=head.id,
        payload={"from_position": old_pos, "occurrence": occ_key or None},
    )
    return head
