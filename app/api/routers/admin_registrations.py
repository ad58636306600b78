from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import StaffContext, get_current_staff
from ...db import get_db
from ...domain.enums import RegistrationStatus
from ...domain.schemas.registration import (
    AdminRegisterIn, CancelOut, RegisterOut, RegistrationActionIn, RegistrationListOut,
    RegistrationRowOut, RegistrationStatsOut, RegistrationUpdateIn,
)
from ...domain.timeutil import as_utc
from ...models import Event, Tenant
from ...repos.events import TenantEventRepo
from ...services.capacity import get_registration_stats
from ...services.cancellation import cancel_registration
from ...services.check_in import check_in_registration, mark_as_no_show, undo_check_in
from ...services.errors import RegistrationError
from ...services.notifications import EventDetails, event_details, notifier, recipient_for
from ...services.registration_allocator import RegistrationInput, create_registration
from ...services.registrations import (
    RegistrationUpdate, get_registration, list_registrations, update_registration_details,
)
from ..errors import resolve_occurrence, to_http

router = APIRouter(prefix="/admin/events/{event_id}/registrations", tags=["admin-registrations"])
log = logging.getLogger("app.admin")


async def _event_or_404(db: AsyncSession, tenant_id: uuid.UUID, event_id: uuid.UUID) -> Event:
    event = await TenantEventRepo(db, tenant_id).get(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Event not found", "code": "UNKNOWN"})
    return event


async def _details(db: AsyncSession, tenant_id: uuid.UUID, event: Event, occurrence_date) -> EventDetails:
    tenant = await db.get(Tenant, tenant_id)
    venue = await TenantEventRepo(db, tenant_id).get_venue(event.venue_id)
    return event_details(event, organizer=tenant.name if tenant else "", venue=venue, occurrence_date=occurrence_date)


@router.get("", response_model=RegistrationListOut)
async def list_event_registrations(
    event_id: uuid.UUID,
    occurrence_date: Optional[datetime] = Query(default=None),
    status_filter: Optional[RegistrationStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    event = await _event_or_404(db, staff.tenant_id, event_id)
    occurrence = as_utc(occurrence_date) if occurrence_date else None
    if occurrence is not None and not event.is_recurring:
        occurrence = None
    try:
        rows = await list_registrations(
            db, tenant_id=staff.tenant_id, event_id=event_id, occurrence_date=occurrence,
            status=status_filter, search=search, limit=limit, offset=offset,
        )
        stats = await get_registration_stats(db, tenant_id=staff.tenant_id, event_id=event_id, occurrence_date=occurrence)
    except RegistrationError as e:
        raise to_http(e)
    return RegistrationListOut(
        registrations=[RegistrationRowOut.model_validate(r) for r in rows],
        stats=RegistrationStatsOut.model_validate(stats),
    )


@router.post("", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
async def add_registration(
    event_id: uuid.UUID,
    payload: AdminRegisterIn,
    background: BackgroundTasks,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    """Staff-entered registration; same rules as the public path, without rate limiting."""
    event = await _event_or_404(db, staff.tenant_id, event_id)
    occurrence = resolve_occurrence(event, payload.occurrence_date)
    details = await _details(db, staff.tenant_id, event, occurrence)
    try:
        result = await create_registration(
            db,
            tenant_id=staff.tenant_id,
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
        reg = await get_registration(db, tenant_id=staff.tenant_id, event_id=event_id, registration_id=result.id)
    except RegistrationError as e:
        raise to_http(e)

    if result.status == RegistrationStatus.WAITLISTED:
        background.add_task(notifier.waitlisted, recipient_for(reg), details, result.waitlist_position)
        message = f"Added to the waitlist at position {result.waitlist_position}."
    else:
        background.add_task(notifier.registration_confirmed, recipient_for(reg), details)
        message = "Registration created."
    log.info("registration_added_by_staff", extra={"registration_id": str(result.id), "staff_id": staff.staff_id})
    return RegisterOut(id=result.id, status=result.status, waitlist_position=result.waitlist_position, message=message)


@router.get("/{registration_id}", response_model=RegistrationRowOut)
async def get_one(
    event_id: uuid.UUID,
    registration_id: uuid.UUID,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        reg = await get_registration(db, tenant_id=staff.tenant_id, event_id=event_id, registration_id=registration_id)
    except RegistrationError as e:
        raise to_http(e)
    return RegistrationRowOut.model_validate(reg)


@router.put("/{registration_id}", response_model=RegistrationRowOut)
async def update_one(
    event_id: uuid.UUID,
    registration_id: uuid.UUID,
    payload: RegistrationUpdateIn,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        reg = await update_registration_details(
            db,
            tenant_id=staff.tenant_id,
            event_id=event_id,
            registration_id=registration_id,
            changes=RegistrationUpdate(**payload.model_dump(exclude_unset=True)),
        )
    except RegistrationError as e:
        raise to_http(e)
    return RegistrationRowOut.model_validate(reg)


@router.delete("/{registration_id}", response_model=CancelOut)
async def cancel_one(
    event_id: uuid.UUID,
    registration_id: uuid.UUID,
    background: BackgroundTasks,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        pre = await get_registration(db, tenant_id=staff.tenant_id, event_id=event_id, registration_id=registration_id)
        event = await _event_or_404(db, staff.tenant_id, event_id)
        details = await _details(db, staff.tenant_id, event, pre.occurrence_date)
        result = await cancel_registration(db, tenant_id=staff.tenant_id, registration_id=registration_id)
    except RegistrationError as e:
        raise to_http(e)

    background.add_task(notifier.cancelled, recipient_for(result.registration), details)
    if result.promoted is not None:
        background.add_task(notifier.promoted, recipient_for(result.promoted), details)
    log.info("registration_cancelled_by_staff", extra={"registration_id": str(registration_id), "staff_id": staff.staff_id})
    return CancelOut(promoted_registration_id=result.promoted_registration_id)


@router.patch("/{registration_id}", response_model=RegistrationRowOut)
async def change_status(
    event_id: uuid.UUID,
    registration_id: uuid.UUID,
    payload: RegistrationActionIn,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        await get_registration(db, tenant_id=staff.tenant_id, event_id=event_id, registration_id=registration_id)
        if payload.action == "check_in":
            reg = await check_in_registration(
                db, tenant_id=staff.tenant_id, registration_id=registration_id, staff_id=staff.staff_id
            )
        elif payload.action == "undo_check_in":
            reg = await undo_check_in(db, tenant_id=staff.tenant_id, registration_id=registration_id)
        else:
            reg = await mark_as_no_show(db, tenant_id=staff.tenant_id, registration_id=registration_id)
    except RegistrationError as e:
        raise to_http(e)
    log.info("registration_status_changed", extra={"registration_id": str(registration_id), "action": payload.action, "staff_id": staff.staff_id})
    return RegistrationRowOut.model_validate(reg)
