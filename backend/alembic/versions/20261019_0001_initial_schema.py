"""Create hosts, schedules, event types and bookings.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "hosts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        _created_at(),
    )
    op.create_index("ix_hosts_username", "hosts", ["username"], unique=True)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_api_keys_host_id", "api_keys", ["host_id"], unique=False)
    op.create_index("ix_api_keys_key", "api_keys", ["key"], unique=True)

    op.create_table(
        "availability_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_availability_schedules_host_id", "availability_schedules", ["host_id"], unique=False
    )

    op.create_table(
        "availability_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.ForeignKeyConstraint(
            ["schedule_id"], ["availability_schedules.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_availability_rules_schedule_id", "availability_rules", ["schedule_id"], unique=False
    )

    op.create_table(
        "date_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("end_time", sa.String(length=5), nullable=True),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(
            ["schedule_id"], ["availability_schedules.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("schedule_id", "date", name="uq_date_overrides_schedule_date"),
    )
    op.create_index(
        "ix_date_overrides_schedule_id", "date_overrides", ["schedule_id"], unique=False
    )

    op.create_table(
        "event_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("slot_interval", sa.Integer(), nullable=True),
        sa.Column("buffer_before", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("buffer_after", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("minimum_notice", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_bookings_per_day", sa.Integer(), nullable=True),
        sa.Column(
            "requires_confirmation", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "location_type", sa.String(length=32), nullable=False, server_default="GOOGLE_MEET"
        ),
        sa.Column("location_value", sa.String(length=500), nullable=True),
        sa.Column(
            "custom_questions_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["schedule_id"], ["availability_schedules.id"], ondelete="SET NULL"
        ),
        sa.UniqueConstraint("host_id", "slug", name="uq_event_types_host_slug"),
    )
    op.create_index("ix_event_types_host_id", "event_types", ["host_id"], unique=False)
    op.create_index("ix_event_types_schedule_id", "event_types", ["schedule_id"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uid", sa.String(length=64), nullable=False),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("event_type_id", sa.Integer(), nullable=False),
        sa.Column("guest_name", sa.String(length=200), nullable=False),
        sa.Column("guest_email", sa.String(length=320), nullable=False),
        sa.Column("guest_timezone", sa.String(length=100), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=500), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column(
            "additional_guests_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True
        ),
        sa.Column("metadata_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("external_event_id", sa.String(length=255), nullable=True),
        sa.Column("external_event_provider", sa.String(length=64), nullable=True),
        sa.Column("rescheduled_from_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["event_type_id"], ["event_types.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rescheduled_from_id"], ["bookings.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_bookings_uid", "bookings", ["uid"], unique=True)
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"], unique=False)
    op.create_index("ix_bookings_event_type_id", "bookings", ["event_type_id"], unique=False)
    op.create_index("ix_bookings_start_time", "bookings", ["start_time"], unique=False)
    op.create_index("ix_bookings_end_time", "bookings", ["end_time"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index(
        "ix_bookings_external_event_id", "bookings", ["external_event_id"], unique=False
    )
    op.create_index(
        "ix_bookings_rescheduled_from_id", "bookings", ["rescheduled_from_id"], unique=False
    )

    op.create_table(
        "google_oauth_credentials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.Text(), nullable=True),
        sa.Column("calendar_id", sa.String(length=255), nullable=False, server_default="primary"),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("host_id", name="uq_google_oauth_credentials_host_id"),
    )
    op.create_index(
        "ix_google_oauth_credentials_host_id",
        "google_oauth_credentials",
        ["host_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_google_oauth_credentials_host_id", table_name="google_oauth_credentials")
    op.drop_table("google_oauth_credentials")

    for index_name in (
        "ix_bookings_rescheduled_from_id",
        "ix_bookings_external_event_id",
        "ix_bookings_status",
        "ix_bookings_end_time",
        "ix_bookings_start_time",
        "ix_bookings_event_type_id",
        "ix_bookings_host_id",
        "ix_bookings_uid",
    ):
        op.drop_index(index_name, table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_event_types_schedule_id", table_name="event_types")
    op.drop_index("ix_event_types_host_id", table_name="event_types")
    op.drop_table("event_types")

    op.drop_index("ix_date_overrides_schedule_id", table_name="date_overrides")
    op.drop_table("date_overrides")

    op.drop_index("ix_availability_rules_schedule_id", table_name="availability_rules")
    op.drop_table("availability_rules")

    op.drop_index("ix_availability_schedules_host_id", table_name="availability_schedules")
    op.drop_table("availability_schedules")

    op.drop_index("ix_api_keys_key", table_name="api_keys")
    op.drop_index("ix_api_keys_host_id", table_name="api_keys")
    op.drop_table("api_keys")

    op.drop_index("ix_hosts_username", table_name="hosts")
    op.drop_table("hosts")
