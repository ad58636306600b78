from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain.enums import EventStatus, Frequency, RegistrationStatus


# ---------- Base & naming ----------
class Base(DeclarativeBase):
    # Keep index/constraint names stable for cleaner migrations
    metadata = sa.MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(cls, name: str) -> sa.Enum:
    # stored as plain text + CHECK so migrations stay portable
    return sa.Enum(cls, name=name, native_enum=False, create_constraint=True, length=20)


TS = sa.DateTime(timezone=True)


# ---------- TENANTS ----------
class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TS, nullable=False, default=_utcnow, server_default=sa.func.now())


# ---------- VENUES ----------
class Venue(Base):
    __tablename__ = "venues"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("tenants.id"), nullable=False)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    __table_args__ = (Index("ix_venues_tenant", "tenant_id"),)


# ---------- EVENTS (master rows; occurrences are never stored) ----------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("tenants.id"), nullable=False)
    title: Mapped[str] = mapped_column(sa.Text, nullable=False)

    start_date: Mapped[datetime] = mapped_column(TS, nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(TS, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    venue_id: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid, ForeignKey("venues.id"), nullable=True)
    timezone: Mapped[str] = mapped_column(sa.Text, nullable=False, default="America/New_York")  # IANA name
    status: Mapped[EventStatus] = mapped_column(
        _enum(EventStatus, "event_status"), nullable=False, default=EventStatus.DRAFT
    )

    # Built-in registration settings
    registration_enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    capacity: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)  # NULL = uncapped
    waitlist_enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    registration_deadline: Mapped[Optional[datetime]] = mapped_column(TS, nullable=True)

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    recurrence_frequency: Mapped[Optional[Frequency]] = mapped_column(
        _enum(Frequency, "recurrence_frequency"), nullable=True
    )
    recurrence_interval: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    recurrence_days_of_week: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)  # bit 0 = Sunday
    recurrence_day_of_month: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)  # 1..31 or -1 (last)
    recurrence_end_date: Mapped[Optional[datetime]] = mapped_column(TS, nullable=True)
    recurrence_count: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TS, nullable=False, default=_utcnow, server_default=sa.func.now())

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity > 0", name="events_capacity_pos"),
        Index("ix_events_tenant_start", "tenant_id", "start_date"),
    )


# ---------- REGISTRATIONS ----------
class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("tenants.id"), nullable=False)
    event_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("events.id"), nullable=False)

    # NULL for non-recurring events; occurrence_key is the comparable form ('' when NULL)
    occurrence_date: Mapped[Optional[datetime]] = mapped_column(TS, nullable=True)
    occurrence_key: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")

    email: Mapped[str] = mapped_column(sa.Text, nullable=False)  # stored lowercase
    first_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    last_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    additional_attendees: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    status: Mapped[RegistrationStatus] = mapped_column(
        _enum(RegistrationStatus, "registration_status"),
        nullable=False,
        default=RegistrationStatus.REGISTERED,
    )
    waitlist_position: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)

    access_token: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(TS, nullable=True)
    checked_in_by: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    reminder_opt_in: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    registered_at: Mapped[datetime] = mapped_column(TS, nullable=False, default=_utcnow, server_default=sa.func.now())
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TS, nullable=True)

    __table_args__ = (
        CheckConstraint("additional_attendees >= 0", name="registrations_attendees_nonneg"),
        CheckConstraint(
            "(status = 'WAITLISTED' AND waitlist_position IS NOT NULL AND waitlist_position >= 1)"
            " OR (status <> 'WAITLISTED' AND waitlist_position IS NULL)",
            name="registrations_waitlist_pos",
        ),
        # one non-cancelled registration per email per occurrence; re-register after cancel is a new row
        Index(
            "ux_reg_active_email",
            "event_id",
            "occurrence_key",
            "email",
            unique=True,
            postgresql_where=sa.text("status <> 'CANCELLED'"),
            sqlite_where=sa.text("status <> 'CANCELLED'"),
        ),
        Index("ix_reg_occurrence_status_pos", "event_id", "occurrence_key", "status", "waitlist_position"),
        Index("ix_reg_tenant", "tenant_id"),
    )


# ---------- OCCURRENCE SLOTS (lock anchor for the per-occurrence critical section) ----------
class OccurrenceSlot(Base):
    __tablename__ = "occurrence_slots"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("tenants.id"), nullable=False)
    event_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("events.id"), nullable=False)
    occurrence_key: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TS, nullable=False, default=_utcnow, server_default=sa.func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "occurrence_key", name="uq_occurrence_slots_event_occurrence"),
    )


# ---------- AUDIT (written in the same transaction as the mutation) ----------
class AuditEntry(Base):
    __tablename__ = "registration_audit"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("tenants.id"), nullable=False)
    action: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid, nullable=True)
    registration_id: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid, nullable=True)
    payload: Mapped[dict] = mapped_column(sa.JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TS, nullable=False, default=_utcnow, server_default=sa.func.now())

    __table_args__ = (
        Index("ix_registration_audit_registration", "registration_id"),
        Index("ix_registration_audit_tenant_created", "tenant_id", "created_at"),
    )
