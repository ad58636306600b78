# app/services/check_in.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import RegistrationStatus
from ..domain.timeutil import now_utc
from ..models import Registration
from ..observability.metrics import CHECKED_IN
from ..repos import audit
from ..repos.registrations import TenantRegistrationRepo
from .errors import InvalidState, NotFound
from .tx import OccurrenceKey, run_serialized

log = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return now_utc()


async def _transition(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    registration_id: uuid.UUID,
    apply: Callable[[Registration], str],
) -> Registration:
    """Lock the registration's occurrence, re-read the row and let `apply` move it (or raise)."""
    pre = await TenantRegistrationRepo(db, tenant_id).get(registration_id)
    if pre is None:
        raise NotFound()
    event_id, occ_key = pre.event_id, pre.occurrence_key

    async def _work(db: AsyncSession) -> Registration:
        reg = await TenantRegistrationRepo(db, tenant_id).get(registration_id, for_update=True)
        if reg is None:
            raise NotFound()
        action = apply(reg)
        await db.flush()
        await audit.add_audit_entry(
            db,
            tenant_id=tenant_id,
            action=action,
            event_id=event_id,
            registration_id=reg.id,
            payload={"status": reg.status.value, "checked_in_by": reg.checked_in_by},
        )
        return reg

    return await run_serialized(db, OccurrenceKey(tenant_id, event_id, occ_key), _work)


async def check_in_registration(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    registration_id: uuid.UUID,
    staff_id: str,
) -> Registration:
    """REGISTERED -> CHECKED_IN. Waitlisted and no-show rows must not be checked in."""

    def apply(reg: Registration) -> str:
        if reg.status == RegistrationStatus.CANCELLED:
            raise InvalidState("Cannot check in a cancelled registration")
        if reg.status == RegistrationStatus.CHECKED_IN:
            raise InvalidState("Already checked in")
        if reg.status == RegistrationStatus.WAITLISTED:
            raise InvalidState("Cannot check in a waitlisted registration")
        if reg.status == RegistrationStatus.NO_SHOW:
            raise InvalidState("Cannot check in a registration marked as no-show")
        reg.status = RegistrationStatus.CHECKED_IN
        reg.checked_in_at = _now_utc()
        reg.checked_in_by = staff_id
        return audit.REGISTRATION_CHECKED_IN

    reg = await _transition(db, tenant_id, registration_id, apply)
    CHECKED_IN.labels(event_id=str(reg.event_id)).inc()
    log.info("registration_checked_in", extra={"registration_id": str(registration_id), "checked_in_by": staff_id})
    return reg


async def undo_check_in(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    registration_id: uuid.UUID,
) -> Registration:
    def apply(reg: Registration) -> str:
        if reg.status != RegistrationStatus.CHECKED_IN:
            raise InvalidState("Registration is not checked in")
        reg.status = RegistrationStatus.REGISTERED
        reg.checked_in_at = None
        reg.checked_in_by = None
        return audit.REGISTRATION_CHECK_IN_UNDONE

    reg = await _transition(db, tenant_id, registration_id, apply)
    log.info("check_in_undone", extra={"registration_id": str(registration_id)})
    return reg


async def mark_as_no_show(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    registration_id: uuid.UUID,
) -> Registration:
    """REGISTERED -> NO_SHOW (terminal). The freed slot is not offered to the waitlist."""

    def apply(reg: Registration) -> str:
        if reg.status != RegistrationStatus.REGISTERED:
            raise InvalidState("Can only mark registered (not checked-in) as no-show")
        reg.status = RegistrationStatus.NO_SHOW
        return audit.REGISTRATION_NO_SHOW

    reg = await _transition(db, tenant_id, registration_id, apply)
    log.info("registration_no_show", extra={"registration_id": str(registration_id)})
    return reg
