from __future__ import annotations

import uuid
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.enums import ACTIVE_STATUSES, RegistrationStatus
from ..models import Registration

# admin listing order: registered first, then the waitlist in queue order
_STATUS_ORDER = case(
    {
        RegistrationStatus.REGISTERED.value: 0,
        RegistrationStatus.CHECKED_IN.value: 1,
        RegistrationStatus.WAITLISTED.value: 2,
        RegistrationStatus.NO_SHOW.value: 3,
        RegistrationStatus.CANCELLED.value: 4,
    },
    value=Registration.status,
    else_=5,
)


class TenantRegistrationRepo:
    """Registration queries bound to one tenant and, where relevant, one occurrence."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def _scoped(self, *where) -> sa.Select:
        return select(Registration).where(Registration.tenant_id == self.tenant_id, *where)

    async def get(self, registration_id: uuid.UUID, *, for_update: bool = False) -> Optional[Registration]:
        q = self._scoped(Registration.id == registration_id)
        if for_update:
            q = q.with_for_update()
        res = await self.db.execute(q)
        return res.scalar_one_or_none()

    async def get_by_token(self, token: str) -> Optional[Registration]:
        res = await self.db.execute(self._scoped(Registration.access_token == token))
        return res.scalar_one_or_none()

    async def find_active_by_email(
        self, event_id: uuid.UUID, occurrence_key: str, email: str, *, exclude_id: Optional[uuid.UUID] = None
    ) -> Optional[Registration]:
        q = self._scoped(
            Registration.event_id == event_id,
            Registration.occurrence_key == occurrence_key,
            Registration.email == email,
            Registration.status != RegistrationStatus.CANCELLED,
        )
        if exclude_id is not None:
            q = q.where(Registration.id != exclude_id)
        res = await self.db.execute(q.limit(1))
        return res.scalar_one_or_none()

    async def count_by_status(self, event_id: uuid.UUID, occurrence_key: str) -> dict[RegistrationStatus, int]:
        res = await self.db.execute(
            select(Registration.status, func.count())
            .where(
                Registration.tenant_id == self.tenant_id,
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
            )
            .group_by(Registration.status)
        )
        counts = {s: 0 for s in RegistrationStatus}
        for status, n in res.all():
            counts[RegistrationStatus(status)] = int(n)
        return counts

    async def count_active(self, event_id: uuid.UUID, occurrence_key: str) -> int:
        res = await self.db.execute(
            select(func.count()).where(
                Registration.tenant_id == self.tenant_id,
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status.in_(ACTIVE_STATUSES),
            )
        )
        return int(res.scalar_one())

    async def count_waitlisted(self, event_id: uuid.UUID, occurrence_key: str) -> int:
        res = await self.db.execute(
            select(func.count()).where(
                Registration.tenant_id == self.tenant_id,
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
        )
        return int(res.scalar_one())

    async def sum_additional_attendees(self, event_id: uuid.UUID, occurrence_key: str) -> int:
        res = await self.db.execute(
            select(func.coalesce(func.sum(Registration.additional_attendees), 0)).where(
                Registration.tenant_id == self.tenant_id,
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status.in_(ACTIVE_STATUSES),
            )
        )
        return int(res.scalar_one())

    async def waitlist_head(self, event_id: uuid.UUID, occurrence_key: str) -> Optional[Registration]:
        res = await self.db.execute(
            self._scoped(
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
            .order_by(Registration.waitlist_position.asc())
            .limit(1)
            .with_for_update()
        )
        return res.scalar_one_or_none()

    async def collapse_waitlist_after(self, event_id: uuid.UUID, occurrence_key: str, vacated_pos: Optional[int]) -> None:
        """Shift waitlist positions down to keep them contiguous after removing an entry."""
        if not vacated_pos:
            return
        await self.db.execute(
            update(Registration)
            .where(
                Registration.tenant_id == self.tenant_id,
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status == RegistrationStatus.WAITLISTED,
                Registration.waitlist_position > vacated_pos,
            )
            .values(waitlist_position=Registration.waitlist_position - 1)
            .execution_options(synchronize_session="fetch")
        )

    async def list_for_event(
        self,
        event_id: uuid.UUID,
        *,
        occurrence_key: Optional[str] = None,
        status: Optional[RegistrationStatus] = None,
        search: Optional[str] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> Sequence[Registration]:
        q = self._scoped(Registration.event_id == event_id)
        if occurrence_key is not None:
            q = q.where(Registration.occurrence_key == occurrence_key)
        if status is not None:
            q = q.where(Registration.status == status)
        if search:
            pattern = f"%{search.strip().lower()}%"
            q = q.where(
                or_(
                    func.lower(Registration.first_name).like(pattern),
                    func.lower(Registration.last_name).like(pattern),
                    Registration.email.like(pattern),
                )
            )
        q = q.order_by(
            _STATUS_ORDER,
            Registration.waitlist_position.asc().nulls_last(),
            Registration.registered_at.asc(),
        ).limit(limit).offset(offset)
        res = await self.db.execute(q)
        return list(res.scalars().all())
