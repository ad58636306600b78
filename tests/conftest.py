import os
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional

# IMPORTANT: settings are read at import time, so point them at the test stores first
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_eventreg.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JWT_SECRET", "test-secret-test-secret-test-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import engine, SessionLocal
from app.domain.enums import EventStatus, RegistrationStatus
from app.models import Base, Event, Registration, Tenant, Venue
from app.services.registration_allocator import RegistrationInput


# Fresh schema per test, on the SAME loop as the test function.
# Also DISPOSE the engine after each test so no pooled connection (bound to
# a previous loop) is reused by the next test.
@pytest_asyncio.fixture(loop_scope="function")
async def schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db(schema):
    async with SessionLocal() as s:
        yield s


@pytest_asyncio.fixture
async def client(schema):
    from app.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


# Outbound email/SMS never leave the test process; calls are recorded instead.
@pytest.fixture(autouse=True)
def sent_notifications(monkeypatch):
    from app.services import notifications

    sent: list[tuple[str, str]] = []

    def _recorder(kind: str):
        async def _record(recipient, *args, **kwargs):
            sent.append((kind, recipient.email))
        return _record

    for kind in ("registration_confirmed", "waitlisted", "promoted", "cancelled"):
        monkeypatch.setattr(notifications.notifier, kind, _recorder(kind))
    yield sent


# No Redis in tests: the public rate limit is a no-op unless a test swaps it.
@pytest.fixture(autouse=True)
def _no_rate_limit(monkeypatch):
    import app.api.routers.public_registrations as public

    async def _allow(*args, **kwargs):
        return None

    monkeypatch.setattr(public, "limit_public_registration", _allow)
    yield


# ---------- helpers ----------
def staff_headers(tenant_id: uuid.UUID, staff_id: str = "staff-1") -> dict[str, str]:
    from app.auth.jwt import create_staff_token

    return {"Authorization": f"Bearer {create_staff_token(staff_id, tenant_id)}"}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def mk_tenant(db: AsyncSession, slug: str = "grace", name: str = "Grace Church") -> uuid.UUID:
    t = Tenant(slug=slug, name=name)
    db.add(t)
    await db.commit()
    return t.id


async def mk_venue(db: AsyncSession, tenant_id: uuid.UUID, name: str = "Main Hall", address: Optional[str] = "1 Church St") -> uuid.UUID:
    v = Venue(tenant_id=tenant_id, name=name, address=address)
    db.add(v)
    await db.commit()
    return v.id


async def mk_event(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    title: str = "Community Dinner",
    start: Optional[datetime] = None,
    capacity: Optional[int] = None,
    waitlist: bool = False,
    enabled: bool = True,
    deadline: Optional[datetime] = None,
    status: EventStatus = EventStatus.PUBLISHED,
    **extra,
) -> uuid.UUID:
    e = Event(
        tenant_id=tenant_id,
        title=title,
        start_date=start or (datetime.now(timezone.utc) + timedelta(days=7)).replace(microsecond=0),
        timezone=extra.pop("timezone", "UTC"),
        status=status,
        registration_enabled=enabled,
        capacity=capacity,
        waitlist_enabled=waitlist,
        registration_deadline=deadline,
        **extra,
    )
    db.add(e)
    await db.commit()
    return e.id


def reg_input(event_id: uuid.UUID, email: str, **kw) -> RegistrationInput:
    first = kw.pop("first_name", email.split("@")[0].title())
    return RegistrationInput(event_id=event_id, email=email, first_name=first, last_name=kw.pop("last_name", "Tester"), **kw)


async def queue_state(db: AsyncSession, event_id: uuid.UUID, occurrence_key: str = "") -> dict[str, tuple[RegistrationStatus, Optional[int]]]:
    """email -> (status, waitlist_position) for one occurrence, ignoring cancelled rows."""
    rows = (
        await db.execute(
            select(Registration.email, Registration.status, Registration.waitlist_position).where(
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status != RegistrationStatus.CANCELLED,
            )
        )
    ).all()
    return {email: (status, pos) for email, status, pos in rows}


async def assert_waitlist_dense(db: AsyncSession, event_id: uuid.UUID, occurrence_key: str = "") -> None:
    rows = (
        await db.execute(
            select(Registration.waitlist_position).where(
                Registration.event_id == event_id,
                Registration.occurrence_key == occurrence_key,
                Registration.status == RegistrationStatus.WAITLISTED,
            )
        )
    ).scalars().all()
    assert sorted(rows) == list(range(1, len(rows) + 1))
