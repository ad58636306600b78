# app/services/capacity.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import RegistrationStatus
from ..domain.timeutil import as_utc, now_utc, occurrence_key
from ..models import Event
from ..repos.events import TenantEventRepo
from ..repos.registrations import TenantRegistrationRepo
from .errors import EventNotFound


@dataclass(frozen=True)
class CapacityStatus:
    registration_enabled: bool
    capacity: Optional[int]
    registered: int        # REGISTERED + CHECKED_IN
    waitlisted: int
    available: Optional[int]  # None when uncapped
    waitlist_enabled: bool
    is_full: bool
    deadline_passed: bool


@dataclass(frozen=True)
class RegistrationStats:
    registered: int
    waitlisted: int
    checked_in: int
    cancelled: int
    no_show: int
    total_attendees: int


def _now_utc() -> datetime:
    return now_utc()


def deadline_passed(event: Event, at: Optional[datetime] = None) -> bool:
    if event.registration_deadline is None:
        return False
    return (at or _now_utc()) > as_utc(event.registration_deadline)


async def load_event(db: AsyncSession, tenant_id: uuid.UUID, event_id: uuid.UUID) -> Event:
    event = await TenantEventRepo(db, tenant_id).get(event_id)
    if event is None:
        raise EventNotFound()
    return event


async def capacity_for(
    db: AsyncSession, tenant_id: uuid.UUID, event: Event, occ_key: str
) -> CapacityStatus:
    """Capacity snapshot for one occurrence of an already loaded event."""
    regs = TenantRegistrationRepo(db, tenant_id)
    registered = await regs.count_active(event.id, occ_key)
    waitlisted = await regs.count_waitlisted(event.id, occ_key)

    if event.capacity is None:
        available, is_full = None, False
    else:
        available = max(0, event.capacity - registered)
        is_full = registered >= event.capacity

    return CapacityStatus(
        registration_enabled=event.registration_enabled,
        capacity=event.capacity,
        registered=registered,
        waitlisted=waitlisted,
        available=available,
        waitlist_enabled=event.waitlist_enabled,
        is_full=is_full,
        deadline_passed=deadline_passed(event),
    )


async def get_capacity_status(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    event_id: uuid.UUID,
    occurrence_date: Optional[datetime] = None,
) -> CapacityStatus:
    """Read-only; occurrence_date=None addresses the single occurrence of a non-recurring event."""
    event = await load_event(db, tenant_id, event_id)
    return await capacity_for(db, tenant_id, event, occurrence_key(occurrence_date))


async def get_registration_stats(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    event_id: uuid.UUID,
    occurrence_date: Optional[datetime] = None,
) -> RegistrationStats:
    await load_event(db, tenant_id, event_id)
    occ_key = occurrence_key(occurrence_date)
    regs = TenantRegistrationRepo(db, tenant_id)

    counts = await regs.count_by_status(event_id, occ_key)
    extra = await regs.sum_additional_attendees(event_id, occ_key)
    registered = counts[RegistrationStatus.REGISTERED]
    checked_in = counts[RegistrationStatus.CHECKED_IN]

    return RegistrationStats(
        registered=registered,
        waitlisted=counts[RegistrationStatus.WAITLISTED],
        checked_in=checked_in,
        cancelled=counts[RegistrationStatus.CANCELLED],
        no_show=counts[RegistrationStatus.NO_SHOW],
        total_attendees=registered + checked_in + extra,
    )
