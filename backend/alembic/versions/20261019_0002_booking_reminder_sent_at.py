"""Track when the 24h reminder email went out for a booking.

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:00:02
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_0002"
down_revision: Union[str, None] = "20261019_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "bookings",
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_bookings_status_reminder_sent_at",
        "bookings",
        ["status", "reminder_sent_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_bookings_status_reminder_sent_at", table_name="bookings")
    op.drop_column("bookings", "reminder_sent_at")
