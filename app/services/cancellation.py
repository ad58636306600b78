# app/services/cancellation.py
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import ACTIVE_STATUSES, RegistrationStatus
from ..domain.timeutil import now_utc
from ..models import Registration
from ..observability.metrics import PROMOTED, REG_CANCELLED
from ..repos import audit
from ..repos.registrations import TenantRegistrationRepo
from .access_tokens import tokens_match
from .capacity import load_event
from .errors import InvalidState, NotFound
from .tx import OccurrenceKey, run_serialized
from .waitlist_promotion import promote_next

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancelResult:
    registration: Registration
    promoted: Optional[Registration] = None

    @property
    def promoted_registration_id(self) -> Optional[uuid.UUID]:
        return self.promoted.id if self.promoted else None


def _now_utc() -> datetime:
    return now_utc()


def _visible(reg: Optional[Registration], access_token: Optional[str]) -> bool:
    # a wrong token must look exactly like a missing row
    if reg is None:
        return False
    return access_token is None or tokens_match(reg.access_token, access_token)


async def cancel_registration(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    registration_id: uuid.UUID,
    access_token: Optional[str] = None,
) -> CancelResult:
    """Cancel a registration.

    - Works for registered, checked-in and waitlisted registrations.
    - If the cancelled row held a slot and the waitlist is enabled, the head of
      the waitlist is promoted and the remaining positions shift down by one.
    - Cancelling a waitlisted row closes the gap it leaves in the queue.
    - access_token, when given, must match; a mismatch is reported as NotFound.

    The cancel, the promotion and the renumbering commit together or not at all.
    """
    regs = TenantRegistrationRepo(db, tenant_id)
    pre = await regs.get(registration_id)
    if not _visible(pre, access_token):
        raise NotFound()

    event_id, occ_key = pre.event_id, pre.occurrence_key
    key = OccurrenceKey(tenant_id, event_id, occ_key)

    async def _work(db: AsyncSession) -> CancelResult:
        regs = TenantRegistrationRepo(db, tenant_id)
        reg = await regs.get(registration_id, for_update=True)
        if not _visible(reg, access_token):
            raise NotFound()
        if reg.status == RegistrationStatus.CANCELLED:
            raise InvalidState("Registration is already cancelled")
        if reg.status == RegistrationStatus.NO_SHOW:
            raise InvalidState("Cannot cancel a registration marked as no-show")

        held_slot = reg.status in ACTIVE_STATUSES
        vacated_pos = reg.waitlist_position if reg.status == RegistrationStatus.WAITLISTED else None
        previous = reg.status

        reg.status = RegistrationStatus.CANCELLED
        reg.cancelled_at = _now_utc()
        reg.waitlist_position = None
        await db.flush()

        await regs.collapse_waitlist_after(event_id, occ_key, vacated_pos)

        await audit.add_audit_entry(
            db,
            tenant_id=tenant_id,
            action=audit.REGISTRATION_CANCELLED,
            event_id=event_id,
            registration_id=reg.id,
            payload={"previous_status": previous.value, "self_service": access_token is not None},
        )

        promoted = None
        if held_slot:
            event = await load_event(db, tenant_id, event_id)
            promoted = await promote_next(db, tenant_id=tenant_id, event=event, occ_key=occ_key)
        return CancelResult(registration=reg, promoted=promoted)

    result = await run_serialized(db, key, _work)

    REG_CANCELLED.labels(event_id=str(event_id)).inc()
    log.info("registration_cancelled", extra={"event_id": str(event_id), "registration_id": str(registration_id)})
    if result.promoted is not None:
        PROMOTED.labels(event_id=str(event_id)).inc()
        log.info(
            "registration_promoted",
            extra={"event_id": str(event_id), "registration_id": str(result.promoted.id)},
        )
    return result
