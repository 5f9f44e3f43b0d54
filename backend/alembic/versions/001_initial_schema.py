"""Initial schema - users, courses, watchlists, notifications, device_registrations.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(320), unique=True, nullable=False),
        sa.Column("username", sa.String(100), nullable=False, server_default=""),
        sa.Column("is_email_verified", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("watch_all_courses", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("notify_on_open", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("notify_on_close", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("notify_on_similar", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("notify_by_email", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("notify_by_web", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("notify_by_push", sa.Boolean(), server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # Courses (one row per section)
    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("course_code", sa.String(50), nullable=False),
        sa.Column("section", sa.String(20), nullable=False),
        sa.Column("period", sa.String(100), nullable=False, server_default=""),
        sa.Column("course_name", sa.String(500), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("days", sa.String(100), nullable=False, server_default=""),
        sa.Column("time", sa.String(100), nullable=False, server_default=""),
        sa.Column("faculty", sa.String(200), nullable=False, server_default=""),
        sa.Column("instructor", sa.String(200), nullable=False, server_default=""),
        sa.Column("room", sa.String(100), nullable=False, server_default=""),
        sa.Column("first_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_courses_identity",
        "courses",
        ["course_code", "section", "period"],
        unique=True,
    )
    op.create_index("ix_courses_course_name", "courses", ["course_name"])

    # Watchlists
    op.create_table(
        "watchlists",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("course_code", sa.String(50), nullable=False),
        sa.Column("section", sa.String(20), nullable=False),
        sa.Column("period", sa.String(100), nullable=False, server_default=""),
        sa.Column("course_name", sa.String(500), nullable=False),
        sa.Column("notify_on_similar", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("similar_filters", JSONB(), nullable=True),
        sa.Column(
            "similar_filter_newly_opened",
            sa.Boolean(),
            server_default=sa.text("false"),
        ),
        sa.Column(
            "added_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_watchlists_user_id", "watchlists", ["user_id"])

    # Web inbox
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "watchlist_id",
            sa.Integer(),
            sa.ForeignKey("watchlists.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("course_code", sa.String(50), nullable=False),
        sa.Column("section", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("opened", "closed", name="direction_enum"),
            nullable=False,
        ),
        sa.Column("trigger_sources", JSONB(), nullable=False, server_default="[]"),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_notifications_user_id_is_read",
        "notifications",
        ["user_id", "is_read"],
    )

    # Device registrations
    op.create_table(
        "device_registrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("device_token", sa.String(1000), nullable=False),
        sa.Column(
            "platform",
            sa.Enum("web", "ios", name="platform_enum"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_device_registrations_user_id",
        "device_registrations",
        ["user_id"],
    )


def downgrade() -> None:
    op.drop_table("device_registrations")
    op.drop_table("notifications")
    op.drop_table("watchlists")
    op.drop_table("courses")
    op.drop_table("users")
    sa.Enum(name="platform_enum").drop(op.get_bind())  # type: ignore[arg-type]
    sa.Enum(name="direction_enum").drop(op.get_bind())  # type: ignore[arg-type]
