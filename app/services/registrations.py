# app/services/registrations.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import RegistrationStatus
from ..domain.timeutil import occurrence_key
from ..models import Event, Registration, Venue
from ..repos import audit
from ..repos.events import TenantEventRepo
from ..repos.registrations import TenantRegistrationRepo
from .capacity import load_event
from .errors import AlreadyRegistered, NotFound
from .registration_allocator import normalize_email
from .tx import OccurrenceKey, run_serialized

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventSummary:
    id: uuid.UUID
    title: str
    start_date: datetime
    end_date: Optional[datetime]
    location: Optional[str]
    venue: Optional[Venue]


@dataclass(frozen=True)
class RegistrationWithEvent:
    registration: Registration
    event: EventSummary


async def summarize_event(db: AsyncSession, tenant_id: uuid.UUID, event: Event) -> EventSummary:
    venue = await TenantEventRepo(db, tenant_id).get_venue(event.venue_id)
    return EventSummary(event.id, event.title, event.start_date, event.end_date, event.location, venue)


async def get_registration_by_token(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    token: str,
) -> Optional[RegistrationWithEvent]:
    """Self-service lookup; the token is the only credential."""
    if not token:
        return None
    reg = await TenantRegistrationRepo(db, tenant_id).get_by_token(token)
    if reg is None:
        return None
    event = await TenantEventRepo(db, tenant_id).get(reg.event_id)
    if event is None:
        return None
    return RegistrationWithEvent(reg, await summarize_event(db, tenant_id, event))


async def get_registration(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    event_id: uuid.UUID,
    registration_id: uuid.UUID,
) -> Registration:
    reg = await TenantRegistrationRepo(db, tenant_id).get(registration_id)
    if reg is None or reg.event_id != event_id:
        raise NotFound()
    return reg


async def list_registrations(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    event_id: uuid.UUID,
    occurrence_date: Optional[datetime] = None,
    status: Optional[RegistrationStatus] = None,
    search: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
) -> Sequence[Registration]:
    """Admin listing: registered first, then the waitlist in queue order, oldest first within a status."""
    await load_event(db, tenant_id, event_id)
    return await TenantRegistrationRepo(db, tenant_id).list_for_event(
        event_id,
        occurrence_key=occurrence_key(occurrence_date) if occurrence_date is not None else None,
        status=status,
        search=search,
        limit=limit,
        offset=offset,
    )


@dataclass(frozen=True)
class RegistrationUpdate:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    additional_attendees: Optional[int] = None
    reminder_opt_in: Optional[bool] = None


async def update_registration_details(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    event_id: uuid.UUID,
    registration_id: uuid.UUID,
    changes: RegistrationUpdate,
) -> Registration:
    """
    Staff edit of contact details. Status and waitlist position are never touched here.
    A new email must not collide with another non-cancelled registration for the same occurrence.
    """
    pre = await get_registration(db, tenant_id=tenant_id, event_id=event_id, registration_id=registration_id)
    occ_key = pre.occurrence_key

    async def _work(db: AsyncSession) -> Registration:
        regs = TenantRegistrationRepo(db, tenant_id)
        reg = await regs.get(registration_id, for_update=True)
        if reg is None:
            raise NotFound()

        changed: dict[str, object] = {}
        if changes.email is not None:
            email = normalize_email(changes.email)
            if email != reg.email:
                if reg.status != RegistrationStatus.CANCELLED and await regs.find_active_by_email(
                    event_id, occ_key, email, exclude_id=reg.id
                ):
                    raise AlreadyRegistered("Another registration already uses this email")
                reg.email = email
                changed["email"] = email
        for field in ("first_name", "last_name"):
            value = getattr(changes, field)
            if value is not None and value.strip() != getattr(reg, field):
                setattr(reg, field, value.strip())
                changed[field] = value.strip()
        if changes.phone is not None:
            reg.phone = changes.phone.strip() or None
            changed["phone"] = reg.phone
        if changes.additional_attendees is not None:
            reg.additional_attendees = changes.additional_attendees
            changed["additional_attendees"] = changes.additional_attendees
        if changes.reminder_opt_in is not None:
            reg.reminder_opt_in = changes.reminder_opt_in
            changed["reminder_opt_in"] = changes.reminder_opt_in

        await db.flush()
        if changed:
            await audit.add_audit_entry(
                db,
                tenant_id=tenant_id,
                action=audit.REGISTRATION_UPDATED,
                event_id=event_id,
                registration_id=reg.id,
                payload={"fields": sorted(changed)},
            )
        return reg

    try:
        reg = await run_serialized(db, OccurrenceKey(tenant_id, event_id, occ_key), _work)
    except IntegrityError:
        raise AlreadyRegistered("Another registration already uses this email")
    log.info("registration_updated", extra={"registration_id": str(registration_id)})
    return reg
