from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.deps import StaffContext, get_current_staff
from ...db import get_db
from ...domain.schemas.event import EventCreateIn, EventOut
from ...domain.schemas.registration import CapacityStatusOut
from ...repos.events import TenantEventRepo
from ...services.capacity import get_capacity_status
from ...services.errors import RegistrationError
from ...services.recurrence import format_recurrence_pattern, local_start, parse_recurrence_rule
from ..errors import resolve_occurrence, to_http

router = APIRouter(prefix="/admin/events", tags=["admin-events"])
log = logging.getLogger("app.admin")


def _event_out(event) -> EventOut:
    out = EventOut.model_validate(event)
    out.recurrence_pattern = format_recurrence_pattern(parse_recurrence_rule(event), local_start(event))
    return out


@router.post("", response_model=EventOut, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreateIn,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    repo = TenantEventRepo(db, staff.tenant_id)
    if payload.venue_id is not None and await repo.get_venue(payload.venue_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="unknown venue")

    recurring = payload.is_recurring
    event = await repo.create(
        title=payload.title,
        start_date=payload.start_date,
        end_date=payload.end_date,
        location=payload.location,
        venue_id=payload.venue_id,
        timezone=payload.timezone,
        status=payload.status,
        registration_enabled=payload.registration_enabled,
        capacity=payload.capacity,
        waitlist_enabled=payload.waitlist_enabled,
        registration_deadline=payload.registration_deadline,
        is_recurring=recurring,
        recurrence_frequency=payload.recurrence_frequency if recurring else None,
        recurrence_interval=payload.recurrence_interval if recurring else None,
        recurrence_days_of_week=payload.days_of_week_mask() if recurring else None,
        recurrence_day_of_month=payload.recurrence_day_of_month if recurring else None,
        recurrence_end_date=payload.recurrence_end_date if recurring else None,
        recurrence_count=payload.recurrence_count if recurring else None,
    )
    out = _event_out(event)
    await db.commit()
    log.info("event_created", extra={"event_id": str(out.id), "tenant_id": str(staff.tenant_id), "staff_id": staff.staff_id})
    return out


@router.get("/{event_id}", response_model=EventOut)
async def get_event(
    event_id: uuid.UUID,
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    event = await TenantEventRepo(db, staff.tenant_id).get(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Event not found", "code": "UNKNOWN"})
    return _event_out(event)


@router.get("/{event_id}/capacity", response_model=CapacityStatusOut)
async def event_capacity(
    event_id: uuid.UUID,
    occurrence_date: Optional[datetime] = Query(default=None),
    staff: StaffContext = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    event = await TenantEventRepo(db, staff.tenant_id).get(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Event not found", "code": "UNKNOWN"})
    occurrence = resolve_occurrence(event, occurrence_date)
    try:
        cap = await get_capacity_status(db, tenant_id=staff.tenant_id, event_id=event_id, occurrence_date=occurrence)
    except RegistrationError as e:
        raise to_http(e)
    return CapacityStatusOut.model_validate(cap)
