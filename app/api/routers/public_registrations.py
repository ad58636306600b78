from __future__ import annotations
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import get_public_tenant
from ...config import get_settings
from ...db import get_db
from ...domain.enums import RegistrationStatus
from ...domain.schemas.event import OccurrencesOut
from ...domain.schemas.registration import (
    CancelOut, CapacityStatusOut, EventSummaryOut, MyRegistrationOut, RegisterIn, RegisterOut,
)
from ...domain.timeutil import as_utc, now_utc
from ...models import Event, Tenant
from ...repos.events import TenantEventRepo
from ...services.cancellation import cancel_registration
from ...services.capacity import get_capacity_status
from ...services.errors import RegistrationError
from ...services.notifications import Recipient, event_details, notifier, recipient_for
from ...services.rate_limit import _client_ip, limit_public_registration
from ...services.recurrence import (
    expand_event_occurrences, format_recurrence_pattern, local_start, parse_recurrence_rule,
)
from ...services.registration_allocator import RegistrationInput, create_registration, normalize_email
from ...services.registrations import get_registration_by_token
from ..errors import resolve_occurrence, to_http

router = APIRouter(prefix="/public/events", tags=["public-registrations"])
log = logging.getLogger("app.public")
S = get_settings()

DEFAULT_WINDOW = timedelta(days=90)
MAX_OCCURRENCES = 500


async def _published_event(db: AsyncSession, tenant_id: uuid.UUID, event_id: uuid.UUID) -> Event:
    event = await TenantEventRepo(db, tenant_id).get_published(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Event not found", "code": "UNKNOWN"})
    return event


@router.post("/{event_id}/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
async def register(
    event_id: uuid.UUID,
    payload: RegisterIn,
    request: Request,
    background: BackgroundTasks,
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    tenant_id, organizer = tenant.id, tenant.name

    event = await _published_event(db, tenant_id, event_id)
    await limit_public_registration(request, tenant_id)

    if payload.website:
        log.warning("honeypot_triggered", extra={"tenant_id": str(tenant_id), "event_id": str(event_id), "ip": _client_ip(request)})
        # look like a success so the bot learns nothing
        return RegisterOut(message="Registration successful!")

    occurrence = resolve_occurrence(event, payload.occurrence_date)
    venue = await TenantEventRepo(db, tenant_id).get_venue(event.venue_id)
    # snapshot before the core runs: its transaction handling expires loaded rows
    details = event_details(event, organizer=organizer, venue=venue, occurrence_date=occurrence)

    try:
        result = await create_registration(
            db,
            tenant_id=tenant_id,
            data=RegistrationInput(
                event_id=event_id,
                occurrence_date=occurrence,
                email=payload.email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone=payload.phone,
                additional_attendees=payload.additional_attendees,
                reminder_opt_in=payload.reminder_opt_in,
            ),
        )
    except RegistrationError as e:
        raise to_http(e)

    recipient = Recipient(
        email=normalize_email(payload.email),
        first_name=payload.first_name,
        access_token=result.access_token,
        phone=payload.phone,
        reminder_opt_in=payload.reminder_opt_in,
    )
    if result.status == RegistrationStatus.WAITLISTED:
        background.add_task(notifier.waitlisted, recipient, details, result.waitlist_position)
        message = (
            f"You've been added to the waitlist at position {result.waitlist_position}. "
            "We'll notify you if a spot opens up."
        )
    else:
        background.add_task(notifier.registration_confirmed, recipient, details)
        message = "Registration successful! Check your email for confirmation."

    return RegisterOut(id=result.id, status=result.status, waitlist_position=result.waitlist_position, message=message)


@router.get("/{event_id}/register")
async def registration_status(
    event_id: uuid.UUID,
    token: Optional[str] = Query(default=None),
    occurrence_date: Optional[datetime] = Query(default=None),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    """With a token: the registrant's own registration. Without: the occurrence's capacity status."""
    tenant_id = tenant.id

    if token:
        found = await get_registration_by_token(db, tenant_id=tenant_id, token=token)
        if found is None or found.registration.event_id != event_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Registration not found", "code": "NOT_FOUND"})
        reg = found.registration
        return {
            "registration": MyRegistrationOut(
                id=reg.id,
                status=reg.status,
                waitlist_position=reg.waitlist_position,
                first_name=reg.first_name,
                last_name=reg.last_name,
                email=reg.email,
                additional_attendees=reg.additional_attendees,
                occurrence_date=reg.occurrence_date,
                registered_at=reg.registered_at,
                event=EventSummaryOut.model_validate(found.event),
            )
        }

    event = await _published_event(db, tenant_id, event_id)
    occurrence = resolve_occurrence(event, occurrence_date)
    try:
        cap = await get_capacity_status(db, tenant_id=tenant_id, event_id=event_id, occurrence_date=occurrence)
    except RegistrationError as e:
        raise to_http(e)
    return {"capacity_status": CapacityStatusOut.model_validate(cap)}


@router.delete("/{event_id}/register", response_model=CancelOut)
async def cancel_own_registration(
    event_id: uuid.UUID,
    background: BackgroundTasks,
    token: str = Query(..., min_length=1),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    tenant_id, organizer = tenant.id, tenant.name

    found = await get_registration_by_token(db, tenant_id=tenant_id, token=token)
    if found is None or found.registration.event_id != event_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Registration not found", "code": "NOT_FOUND"})

    registration_id = found.registration.id
    event = await TenantEventRepo(db, tenant_id).get(event_id)
    details = event_details(
        event, organizer=organizer, venue=found.event.venue, occurrence_date=found.registration.occurrence_date
    )

    try:
        result = await cancel_registration(db, tenant_id=tenant_id, registration_id=registration_id, access_token=token)
    except RegistrationError as e:
        raise to_http(e)

    background.add_task(notifier.cancelled, recipient_for(result.registration), details)
    if result.promoted is not None:
        background.add_task(notifier.promoted, recipient_for(result.promoted), details)
    return CancelOut(promoted_registration_id=result.promoted_registration_id)


@router.get("/{event_id}/occurrences", response_model=OccurrencesOut)
async def list_occurrences(
    event_id: uuid.UUID,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    limit: int = Query(default=S.DEFAULT_OCCURRENCE_LIMIT, ge=1, le=MAX_OCCURRENCES),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    event = await _published_event(db, tenant.id, event_id)
    range_start = as_utc(start) if start else now_utc()
    range_end = as_utc(end) if end else range_start + DEFAULT_WINDOW
    if range_end < range_start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")

    occurrences = expand_event_occurrences(event, range_start, range_end, limit)
    return OccurrencesOut(
        event_id=event.id,
        pattern=format_recurrence_pattern(parse_recurrence_rule(event), local_start(event)),
        occurrences=occurrences,
    )
