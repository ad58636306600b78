import uuid
from datetime import datetime

import pytest
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import EventStatus, Frequency
from app.models import Registration
from tests.conftest import mk_event, mk_tenant, staff_headers, utc

pytestmark = pytest.mark.asyncio

PUBLIC = {"X-Tenant-Slug": "grace"}


def _body(email: str, **kw) -> dict:
    return {"email": email, "first_name": "Ann", "last_name": "Lee", **kw}


async def _row_count(db: AsyncSession) -> int:
    return int((await db.execute(select(func.count()).select_from(Registration))).scalar_one())


async def test_public_register_and_duplicate(client: AsyncClient, db: AsyncSession, sent_notifications):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid, capacity=5)

    r = await client.post(f"/public/events/{eid}/register", json=_body("Ann@Example.com"), headers=PUBLIC)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["success"] is True
    assert body["status"] == "REGISTERED"
    assert body["waitlist_position"] is None
    assert sent_notifications == [("registration_confirmed", "ann@example.com")]

    r = await client.post(f"/public/events/{eid}/register", json=_body("ann@example.com"), headers=PUBLIC)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "ALREADY_REGISTERED"


async def test_public_register_waitlist_message(client: AsyncClient, db: AsyncSession, sent_notifications):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid, capacity=1, waitlist=True)
    await client.post(f"/public/events/{eid}/register", json=_body("a@example.com"), headers=PUBLIC)

    r = await client.post(f"/public/events/{eid}/register", json=_body("b@example.com"), headers=PUBLIC)
    assert r.status_code == 201
    assert r.json()["status"] == "WAITLISTED"
    assert r.json()["waitlist_position"] == 1
    assert "position 1" in r.json()["message"]
    assert sent_notifications[-1] == ("waitlisted", "b@example.com")


async def test_capacity_full_is_400(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid, capacity=1)
    await client.post(f"/public/events/{eid}/register", json=_body("a@example.com"), headers=PUBLIC)
    r = await client.post(f"/public/events/{eid}/register", json=_body("b@example.com"), headers=PUBLIC)
    assert r.status_code == 400
    assert r.json()["detail"] == {"error": "Event is at full capacity", "code": "CAPACITY_FULL"}


async def test_honeypot_fakes_success_and_stores_nothing(client: AsyncClient, db: AsyncSession, sent_notifications):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)

    r = await client.post(
        f"/public/events/{eid}/register", json=_body("bot@example.com", website="http://spam"), headers=PUBLIC
    )
    assert r.status_code == 201
    assert r.json()["success"] is True
    assert r.json()["id"] is None
    assert await _row_count(db) == 0
    assert sent_notifications == []


async def test_invalid_payload_is_422(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)
    r = await client.post(
        f"/public/events/{eid}/register", json=_body("a@example.com", additional_attendees=21), headers=PUBLIC
    )
    assert r.status_code == 422


async def test_tenant_header_required(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)
    r = await client.post(f"/public/events/{eid}/register", json=_body("a@example.com"))
    assert r.status_code == 400
    r = await client.post(f"/public/events/{eid}/register", json=_body("a@example.com"), headers={"X-Tenant-Slug": "nope"})
    assert r.status_code == 404


async def test_draft_event_is_not_public(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid, status=EventStatus.DRAFT)
    r = await client.post(f"/public/events/{eid}/register", json=_body("a@example.com"), headers=PUBLIC)
    assert r.status_code == 404


async def test_rate_limited(client: AsyncClient, db: AsyncSession, monkeypatch):
    import app.api.routers.public_registrations as public

    async def _deny(*args, **kwargs):
        raise HTTPException(status_code=429, detail="Too many registration attempts. Please try again later.")

    monkeypatch.setattr(public, "limit_public_registration", _deny)
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)
    r = await client.post(f"/public/events/{eid}/register", json=_body("a@example.com"), headers=PUBLIC)
    assert r.status_code == 429


async def test_recurring_event_needs_a_real_occurrence(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(
        db, tid, start=utc(2030, 1, 6, 15, 0), is_recurring=True, recurrence_frequency=Frequency.WEEKLY
    )
    url = f"/public/events/{eid}/register"

    r = await client.post(url, json=_body("a@example.com"), headers=PUBLIC)
    assert r.status_code == 400 and r.json()["detail"]["code"] == "INVALID_OCCURRENCE"

    r = await client.post(url, json=_body("a@example.com", occurrence_date="2030-01-07T15:00:00Z"), headers=PUBLIC)
    assert r.status_code == 400 and r.json()["detail"]["code"] == "INVALID_OCCURRENCE"

    r = await client.post(url, json=_body("a@example.com", occurrence_date="2030-01-13T15:00:00Z"), headers=PUBLIC)
    assert r.status_code == 201, r.text

    row = (await db.execute(select(Registration))).scalar_one()
    assert row.occurrence_key == "2030-01-13T15:00:00Z"


async def test_self_service_lookup_and_cancel(client: AsyncClient, db: AsyncSession, sent_notifications):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid, capacity=1, waitlist=True)
    url = f"/public/events/{eid}/register"
    a = (await client.post(url, json=_body("a@example.com"), headers=PUBLIC)).json()
    b = (await client.post(url, json=_body("b@example.com"), headers=PUBLIC)).json()

    r = await client.get(url, headers=PUBLIC)
    assert r.json()["capacity_status"]["is_full"] is True
    assert r.json()["capacity_status"]["waitlisted"] == 1

    token = (await db.execute(select(Registration.access_token).where(Registration.id == uuid.UUID(a["id"])))).scalar_one()
    r = await client.get(url, params={"token": token}, headers=PUBLIC)
    assert r.status_code == 200
    assert r.json()["registration"]["email"] == "a@example.com"
    assert r.json()["registration"]["event"]["title"] == "Community Dinner"

    r = await client.delete(url, params={"token": "wrong"}, headers=PUBLIC)
    assert r.status_code == 404

    r = await client.delete(url, params={"token": token}, headers=PUBLIC)
    assert r.status_code == 200
    assert r.json()["promoted_registration_id"] == b["id"]
    assert ("cancelled", "a@example.com") in sent_notifications
    assert ("promoted", "b@example.com") in sent_notifications


async def test_admin_requires_staff_token(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)
    r = await client.get(f"/admin/events/{eid}/registrations")
    assert r.status_code == 401
    r = await client.get(f"/admin/events/{eid}/registrations", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


async def test_admin_check_in_flow(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid, capacity=10)
    staff = staff_headers(tid, "staff-9")
    base = f"/admin/events/{eid}/registrations"

    r = await client.post(base, json=_body("a@example.com", additional_attendees=2), headers=staff)
    assert r.status_code == 201, r.text
    rid = r.json()["id"]

    r = await client.patch(f"{base}/{rid}", json={"action": "check_in"}, headers=staff)
    assert r.status_code == 200
    assert r.json()["status"] == "CHECKED_IN"
    assert r.json()["checked_in_by"] == "staff-9"

    r = await client.patch(f"{base}/{rid}", json={"action": "check_in"}, headers=staff)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_STATE"

    r = await client.get(base, headers=staff)
    assert r.status_code == 200
    stats = r.json()["stats"]
    assert stats["checked_in"] == 1 and stats["total_attendees"] == 3

    r = await client.patch(f"{base}/{rid}", json={"action": "undo_check_in"}, headers=staff)
    assert r.json()["status"] == "REGISTERED"


async def test_admin_update_rejects_email_collision(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)
    staff = staff_headers(tid)
    base = f"/admin/events/{eid}/registrations"
    await client.post(base, json=_body("a@example.com"), headers=staff)
    b = (await client.post(base, json=_body("b@example.com"), headers=staff)).json()

    r = await client.put(f"{base}/{b['id']}", json={"email": "A@example.com"}, headers=staff)
    assert r.status_code == 409

    r = await client.put(f"{base}/{b['id']}", json={"phone": "555-0100", "first_name": " Bea "}, headers=staff)
    assert r.status_code == 200
    assert r.json()["phone"] == "555-0100" and r.json()["first_name"] == "Bea"


async def test_staff_of_other_tenant_sees_nothing(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    other = await mk_tenant(db, slug="other", name="Other")
    eid = await mk_event(db, tid)
    r = await client.get(f"/admin/events/{eid}/registrations", headers=staff_headers(other))
    assert r.status_code == 404


async def test_admin_creates_recurring_event_and_lists_occurrences(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    r = await client.post(
        "/admin/events",
        json={
            "title": "Sunday Service",
            "start_date": "2030-01-06T15:00:00Z",
            "timezone": "UTC",
            "status": "PUBLISHED",
            "registration_enabled": True,
            "is_recurring": True,
            "recurrence_frequency": "WEEKLY",
            "recurrence_days_of_week": [0],
        },
        headers=staff_headers(tid),
    )
    assert r.status_code == 201, r.text
    event = r.json()
    assert event["recurrence_days_of_week"] == 1
    assert event["recurrence_pattern"] == "Weekly on Sun"

    r = await client.get(
        f"/public/events/{event['id']}/occurrences",
        params={"start": "2030-01-01T00:00:00Z", "end": "2030-01-31T00:00:00Z"},
        headers=PUBLIC,
    )
    assert r.status_code == 200
    got = [datetime.fromisoformat(d.replace("Z", "+00:00")) for d in r.json()["occurrences"]]
    assert got == [utc(2030, 1, d, 15, 0) for d in (6, 13, 20, 27)]


async def test_health_liveness(client: AsyncClient):
    r = await client.get("/health/liveness")
    assert r.status_code == 200


async def test_metrics_expose_registration_counters(client: AsyncClient, db: AsyncSession):
    tid = await mk_tenant(db)
    eid = await mk_event(db, tid)
    await client.post(f"/public/events/{eid}/register", json=_body("m@example.com"), headers=PUBLIC)

    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "reg_created_total" in r.text
