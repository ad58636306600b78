# app/services/registration_allocator.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import RegistrationStatus
from ..domain.timeutil import occurrence_key
from ..models import Registration
from ..observability.metrics import REG_CREATED, REG_REJECTED, REG_WAITLISTED
from ..repos import audit
from ..repos.registrations import TenantRegistrationRepo
from .access_tokens import new_access_token
from .capacity import capacity_for, deadline_passed, load_event
from .errors import AlreadyRegistered, CapacityFull, DeadlinePassed, NotEnabled, RegistrationError
from .tx import OccurrenceKey, run_serialized

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationInput:
    event_id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    occurrence_date: Optional[datetime] = None
    phone: Optional[str] = None
    additional_attendees: int = 0
    reminder_opt_in: bool = True


@dataclass(frozen=True)
class RegistrationResult:
    id: uuid.UUID
    status: RegistrationStatus
    waitlist_position: Optional[int]
    access_token: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def create_registration(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    data: RegistrationInput,
) -> RegistrationResult:
    """
    Register someone for an event occurrence.

    Checks run in a fixed order: event exists, registration enabled, deadline,
    duplicate email, then capacity. When the occurrence is full the registrant is
    appended to the waitlist (if enabled) or rejected with CapacityFull.

    The duplicate check, the capacity count and the insert happen inside the
    occurrence's critical section so two concurrent requests can never both take
    the last slot.
    """
    try:
        return await _create(db, tenant_id=tenant_id, data=data)
    except RegistrationError as e:
        REG_REJECTED.labels(code=e.code).inc()
        raise


async def _create(db: AsyncSession, *, tenant_id: uuid.UUID, data: RegistrationInput) -> RegistrationResult:
    event = await load_event(db, tenant_id, data.event_id)
    if not event.registration_enabled:
        raise NotEnabled()
    if deadline_passed(event):
        raise DeadlinePassed()

    email = normalize_email(data.email)
    occ_key = occurrence_key(data.occurrence_date)
    key = OccurrenceKey(tenant_id, data.event_id, occ_key)

    async def _work(db: AsyncSession) -> RegistrationResult:
        # capacity and waitlist settings are read again under the lock
        event = await load_event(db, tenant_id, data.event_id)
        regs = TenantRegistrationRepo(db, tenant_id)

        if await regs.find_active_by_email(event.id, occ_key, email):
            raise AlreadyRegistered()

        cap = await capacity_for(db, tenant_id, event, occ_key)
        status, position = RegistrationStatus.REGISTERED, None
        if cap.is_full:
            if not event.waitlist_enabled:
                raise CapacityFull()
            status, position = RegistrationStatus.WAITLISTED, cap.waitlisted + 1

        reg = Registration(
            tenant_id=tenant_id,
            event_id=event.id,
            occurrence_date=data.occurrence_date,
            occurrence_key=occ_key,
            email=email,
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            phone=(data.phone or "").strip() or None,
            additional_attendees=data.additional_attendees or 0,
            status=status,
            waitlist_position=position,
            access_token=new_access_token(),
            reminder_opt_in=data.reminder_opt_in,
        )
        db.add(reg)
        await db.flush()

        await audit.add_audit_entry(
            db,
            tenant_id=tenant_id,
            action=audit.REGISTRATION_CREATED,
            event_id=event.id,
            registration_id=reg.id,
            payload={"status": status.value, "waitlist_position": position, "occurrence": occ_key or None},
        )
        return RegistrationResult(reg.id, status, position, reg.access_token)

    try:
        result = await run_serialized(db, key, _work)
    except IntegrityError:
        # partial unique index caught a duplicate the section did not see (another process)
        raise AlreadyRegistered()

    REG_CREATED.labels(event_id=str(data.event_id)).inc()
    if result.status == RegistrationStatus.WAITLISTED:
        REG_WAITLISTED.labels(event_id=str(data.event_id)).inc()
    log.info(
        "registration_created",
        extra={
            "event_id": str(data.event_id),
            "registration_id": str(result.id),
            "status": result.status.value,
            "waitlist_position": result.waitlist_position,
        },
    )
    return result
