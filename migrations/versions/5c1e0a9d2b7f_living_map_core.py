"""living map core schema

Revision ID: 5c1e0a9d2b7f
Revises:
Create Date: 2026-10-17 09:12:44.318502

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from living_map.db.guards import guard_statements

# revision identifiers, used by Alembic.
revision: str = "5c1e0a9d2b7f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Create prayer, memorial, notification and queue tables with their guards."""
    op.create_table(
        "user_profile",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("notification_radius_km", sa.Float(), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_table(
        "user_location",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("location_type", sa.String(length=20), nullable=False),
        sa.Column("recorded_at", _TS, nullable=False),
        sa.CheckConstraint(
            "lat BETWEEN -90 AND 90 AND lng BETWEEN -180 AND 180",
            name="ck_user_location_coordinates",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_location_lat_lng", "user_location", ["lat", "lng"])
    op.create_index(
        "ix_user_location_user_recorded", "user_location", ["user_id", "recorded_at"]
    )
    op.create_table(
        "admin_role",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.CheckConstraint("role IN ('admin', 'moderator')", name="ck_admin_role_role"),
        sa.PrimaryKeyConstraint("user_id", "role"),
    )

    op.create_table(
        "prayer",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("author_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("origin_lat", sa.Float(), nullable=False),
        sa.Column("origin_lng", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("moderation_status", sa.String(length=20), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("expires_at", _TS, nullable=True),
        sa.Column("archived_at", _TS, nullable=True),
        sa.Column("archive_reason", sa.String(length=50), nullable=True),
        sa.CheckConstraint(
            "status IN ('active', 'hidden', 'removed', 'pending_review')",
            name="ck_prayer_status",
        ),
        sa.CheckConstraint("origin_lat BETWEEN -90 AND 90", name="ck_prayer_origin_lat"),
        sa.CheckConstraint("origin_lng BETWEEN -180 AND 180", name="ck_prayer_origin_lng"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prayer_author_id", "prayer", ["author_id"])
    op.create_index("ix_prayer_origin", "prayer", ["origin_lat", "origin_lng"])
    op.create_index("ix_prayer_expires_at", "prayer", ["expires_at"])

    op.create_table(
        "memorial_connection",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("prayer_id", sa.Integer(), nullable=False),
        sa.Column("from_lat", sa.Float(), nullable=False),
        sa.Column("from_lng", sa.Float(), nullable=False),
        sa.Column("to_lat", sa.Float(), nullable=False),
        sa.Column("to_lng", sa.Float(), nullable=False),
        sa.Column("from_user_id", sa.String(length=64), nullable=True),
        sa.Column("to_user_id", sa.String(length=64), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("is_eternal", sa.Boolean(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("expires_at", _TS, nullable=True),
        sa.CheckConstraint(
            "kind IN ('prayer_response', 'ongoing_prayer', 'answered_prayer')",
            name="ck_memorial_connection_kind",
        ),
        sa.CheckConstraint(
            "from_lat BETWEEN -90 AND 90 AND to_lat BETWEEN -90 AND 90",
            name="ck_memorial_connection_lat",
        ),
        sa.CheckConstraint(
            "from_lng BETWEEN -180 AND 180 AND to_lng BETWEEN -180 AND 180",
            name="ck_memorial_connection_lng",
        ),
        sa.ForeignKeyConstraint(["prayer_id"], ["prayer.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_memorial_connection_prayer_id", "memorial_connection", ["prayer_id"])
    op.create_index(
        "ix_memorial_connection_from_user_id", "memorial_connection", ["from_user_id"]
    )
    op.create_index("ix_memorial_connection_to_user_id", "memorial_connection", ["to_user_id"])
    op.create_index("ix_memorial_connection_created", "memorial_connection", ["created_at", "id"])
    op.create_index("ix_memorial_connection_from", "memorial_connection", ["from_lat", "from_lng"])
    op.create_index("ix_memorial_connection_to", "memorial_connection", ["to_lat", "to_lng"])
    for statement in guard_statements(op.get_bind().dialect.name, "memorial_connection"):
        op.execute(statement)

    op.create_table(
        "prayer_response",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("prayer_id", sa.Integer(), nullable=False),
        sa.Column("responder_id", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.ForeignKeyConstraint(["prayer_id"], ["prayer.id"]),
        sa.ForeignKeyConstraint(["connection_id"], ["memorial_connection.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prayer_response_prayer_id", "prayer_response", ["prayer_id"])
    op.create_index("ix_prayer_response_responder_id", "prayer_response", ["responder_id"])

    op.create_table(
        "notification",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("recipient_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("event_key", sa.String(length=128), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("prayer_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("read_at", _TS, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("dispatched_at", _TS, nullable=True),
        sa.CheckConstraint(
            "(NOT is_read AND read_at IS NULL) OR (is_read AND read_at IS NOT NULL)",
            name="ck_notification_read_state",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("recipient_id", "event_key", name="uq_notification_recipient_event"),
    )
    op.create_index(
        "ix_notification_recipient_created", "notification", ["recipient_id", "created_at"]
    )
    op.create_index("ix_notification_dispatch", "notification", ["dispatched_at", "id"])

    op.create_table(
        "notification_preference",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("nearby_prayers_enabled", sa.Boolean(), nullable=False),
        sa.Column("prayer_support_enabled", sa.Boolean(), nullable=False),
        sa.Column("prayer_response_enabled", sa.Boolean(), nullable=False),
        sa.Column("prayer_answered_enabled", sa.Boolean(), nullable=False),
        sa.Column("push_notifications_enabled", sa.Boolean(), nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_table(
        "push_token",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("platform", sa.String(length=10), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("last_used_at", _TS, nullable=True),
        sa.CheckConstraint("platform IN ('ios', 'android', 'web')", name="ck_push_token_platform"),
        sa.CheckConstraint("length(token) > 0", name="ck_push_token_not_empty"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", "token", name="uq_push_token_user_platform"),
    )
    op.create_index("ix_push_token_user_active", "push_token", ["user_id", "is_active"])
    op.create_table(
        "notification_rate_limit",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("notification_type", sa.String(length=32), nullable=False),
        sa.Column("last_sent_at", _TS, nullable=False),
        sa.Column("sent_count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "notification_type"),
    )

    op.create_table(
        "queue_item",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_history", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("processing_started_at", _TS, nullable=True),
        sa.Column("processed_at", _TS, nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_queue_item_status",
        ),
        sa.CheckConstraint("priority BETWEEN 0 AND 100", name="ck_queue_item_priority"),
        sa.CheckConstraint("retry_count >= 0", name="ck_queue_item_retry_count"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_queue_item_claim", "queue_item", ["status", "priority", "created_at"])
    op.create_index(
        "ix_queue_item_processing", "queue_item", ["status", "processing_started_at"]
    )
    op.create_table(
        "dead_letter_item",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("original_item_id", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("error_history", sa.JSON(), nullable=False),
        sa.Column("moved_at", _TS, nullable=False),
        sa.Column("retried_at", _TS, nullable=True),
        sa.Column("retry_from_dlq_count", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("original_item_id"),
    )
    op.create_index("ix_dead_letter_item_moved", "dead_letter_item", ["moved_at"])


def downgrade() -> None:
    """Drop everything created by this revision."""
    bind = op.get_bind()
    op.drop_table("dead_letter_item")
    op.drop_table("queue_item")
    op.drop_table("notification_rate_limit")
    op.drop_table("push_token")
    op.drop_table("notification_preference")
    op.drop_table("notification")
    op.drop_table("prayer_response")
    op.drop_table("memorial_connection")
    if bind.dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS prevent_memorial_geometry_change()")
        op.execute("DROP FUNCTION IF EXISTS prevent_memorial_deletion()")
    op.drop_table("prayer")
    op.drop_table("admin_role")
    op.drop_table("user_location")
    op.drop_table("user_profile")
