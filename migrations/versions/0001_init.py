"""tenants, events, registrations, occurrence slots, audit

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

TS = sa.DateTime(timezone=True)

REG_STATUSES = ("REGISTERED", "WAITLISTED", "CHECKED_IN", "CANCELLED", "NO_SHOW")
FREQUENCIES = ("DAILY", "WEEKLY", "BIWEEKLY", "MONTHLY", "YEARLY")


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
        sa.UniqueConstraint("slug", name="uq_tenants_slug"),
    )

    op.create_table(
        "venues",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", name="fk_venues_tenant_id_tenants"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_venues"),
    )
    op.create_index("ix_venues_tenant", "venues", ["tenant_id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", name="fk_events_tenant_id_tenants"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("start_date", TS, nullable=False),
        sa.Column("end_date", TS, nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("venue_id", sa.Uuid(), sa.ForeignKey("venues.id", name="fk_events_venue_id_venues"), nullable=True),
        sa.Column("timezone", sa.Text(), nullable=False, server_default="America/New_York"),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("registration_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("waitlist_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("registration_deadline", TS, nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurrence_frequency", sa.String(20), nullable=True),
        sa.Column("recurrence_interval", sa.Integer(), nullable=True),
        sa.Column("recurrence_days_of_week", sa.Integer(), nullable=True),
        sa.Column("recurrence_day_of_month", sa.Integer(), nullable=True),
        sa.Column("recurrence_end_date", TS, nullable=True),
        sa.Column("recurrence_count", sa.Integer(), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_events"),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_events_events_capacity_pos"),
        sa.CheckConstraint(_in("status", ("DRAFT", "PUBLISHED")), name="ck_events_event_status"),
        sa.CheckConstraint(_in("recurrence_frequency", FREQUENCIES), name="ck_events_recurrence_frequency"),
    )
    op.create_index("ix_events_tenant_start", "events", ["tenant_id", "start_date"])

    op.create_table(
        "registrations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", name="fk_registrations_tenant_id_tenants"), nullable=False),
        sa.Column("event_id", sa.Uuid(), sa.ForeignKey("events.id", name="fk_registrations_event_id_events"), nullable=False),
        sa.Column("occurrence_date", TS, nullable=True),
        sa.Column("occurrence_key", sa.Text(), nullable=False, server_default=""),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("additional_attendees", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default="REGISTERED"),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("checked_in_at", TS, nullable=True),
        sa.Column("checked_in_by", sa.Text(), nullable=True),
        sa.Column("reminder_opt_in", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("registered_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("cancelled_at", TS, nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_registrations"),
        sa.UniqueConstraint("access_token", name="uq_registrations_access_token"),
        sa.CheckConstraint("additional_attendees >= 0", name="ck_registrations_registrations_attendees_nonneg"),
        sa.CheckConstraint(
            "(status = 'WAITLISTED' AND waitlist_position IS NOT NULL AND waitlist_position >= 1)"
            " OR (status <> 'WAITLISTED' AND waitlist_position IS NULL)",
            name="ck_registrations_registrations_waitlist_pos",
        ),
        sa.CheckConstraint(_in("status", REG_STATUSES), name="ck_registrations_registration_status"),
    )
    # one non-cancelled registration per email per occurrence
    op.create_index(
        "ux_reg_active_email",
        "registrations",
        ["event_id", "occurrence_key", "email"],
        unique=True,
        postgresql_where=sa.text("status <> 'CANCELLED'"),
        sqlite_where=sa.text("status <> 'CANCELLED'"),
    )
    op.create_index(
        "ix_reg_occurrence_status_pos",
        "registrations",
        ["event_id", "occurrence_key", "status", "waitlist_position"],
    )
    op.create_index("ix_reg_tenant", "registrations", ["tenant_id"])

    op.create_table(
        "occurrence_slots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", name="fk_occurrence_slots_tenant_id_tenants"), nullable=False),
        sa.Column("event_id", sa.Uuid(), sa.ForeignKey("events.id", name="fk_occurrence_slots_event_id_events"), nullable=False),
        sa.Column("occurrence_key", sa.Text(), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_occurrence_slots"),
        sa.UniqueConstraint("event_id", "occurrence_key", name="uq_occurrence_slots_event_occurrence"),
    )

    op.create_table(
        "registration_audit",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", name="fk_registration_audit_tenant_id_tenants"), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Uuid(), nullable=True),
        sa.Column("registration_id", sa.Uuid(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_registration_audit"),
    )
    op.create_index("ix_registration_audit_registration", "registration_audit", ["registration_id"])
    op.create_index("ix_registration_audit_tenant_created", "registration_audit", ["tenant_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_registration_audit_tenant_created", table_name="registration_audit")
    op.drop_index("ix_registration_audit_registration", table_name="registration_audit")
    op.drop_table("registration_audit")
    op.drop_table("occurrence_slots")
    op.drop_index("ix_reg_tenant", table_name="registrations")
    op.drop_index("ix_reg_occurrence_status_pos", table_name="registrations")
    op.drop_index("ux_reg_active_email", table_name="registrations")
    op.drop_table("registrations")
    op.drop_index("ix_events_tenant_start", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_venues_tenant", table_name="venues")
    op.drop_table("venues")
    op.drop_table("tenants")
