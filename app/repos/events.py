from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import EventStatus
from ..models import Event, Tenant, Venue


async def get_tenant_by_slug(db: AsyncSession, slug: str) -> Optional[Tenant]:
    res = await db.execute(select(Tenant).where(Tenant.slug == slug))
    return res.scalar_one_or_none()


class TenantEventRepo:
    """Event access bound to one tenant; rows of other tenants are invisible through it."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID) -> None:
        self.db = db
        self.tenant_id = tenant_id

    async def get(self, event_id: uuid.UUID) -> Optional[Event]:
        res = await self.db.execute(
            select(Event).where(Event.id == event_id, Event.tenant_id == self.tenant_id)
        )
        return res.scalar_one_or_none()

    async def get_published(self, event_id: uuid.UUID) -> Optional[Event]:
        res = await self.db.execute(
            select(Event).where(
                Event.id == event_id,
                Event.tenant_id == self.tenant_id,
                Event.status == EventStatus.PUBLISHED,
            )
        )
        return res.scalar_one_or_none()

    async def get_venue(self, venue_id: Optional[uuid.UUID]) -> Optional[Venue]:
        if venue_id is None:
            return None
        res = await self.db.execute(
            select(Venue).where(Venue.id == venue_id, Venue.tenant_id == self.tenant_id)
        )
        return res.scalar_one_or_none()

    async def create(self, **fields) -> Event:
        e = Event(tenant_id=self.tenant_id, **fields)
        self.db.add(e)
        await self.db.flush()
        return e
