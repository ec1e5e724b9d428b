"""Create the canonical media asset table.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


asset_status = postgresql.ENUM(
    "upload_url_generated",
    "active",
    "archived",
    "broken",
    name="assetstatus",
    create_type=False,
)


def upgrade() -> None:
    asset_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "media_assets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("external_asset_id", sa.String(length=255), nullable=True),
        sa.Column("external_upload_id", sa.String(length=255), nullable=True),
        sa.Column("public_id", sa.String(length=512), nullable=True),
        sa.Column("resource_type", sa.String(length=32), nullable=True),
        sa.Column("status", asset_status, nullable=False, server_default="upload_url_generated"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_by_name", sa.String(length=128), nullable=True),
        sa.Column("archived_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("archived_by_name", sa.String(length=128), nullable=True),
        sa.Column("restored_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("restored_by_name", sa.String(length=128), nullable=True),
        sa.Column("marked_as_broken_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("marked_as_broken_by_name", sa.String(length=128), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("archive_reason", sa.Text(), nullable=True),
        sa.Column("archive_event_id", sa.String(length=256), nullable=True),
        sa.Column("format", sa.String(length=32), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("aspect_ratio", sa.String(length=16), nullable=True),
        sa.Column("resolution_tier", sa.String(length=16), nullable=True),
        sa.Column("ingest_type", sa.String(length=64), nullable=True),
        sa.Column("state", sa.String(length=32), nullable=True),
        sa.Column("upload_status", sa.String(length=16), nullable=True),
        sa.Column("asset_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("primary_public_playback_id", sa.String(length=255), nullable=True),
        sa.Column("primary_signed_playback_id", sa.String(length=255), nullable=True),
        sa.Column("platform_error", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("external_asset_id"),
        sa.UniqueConstraint("external_upload_id"),
        sa.UniqueConstraint("public_id"),
    )
    op.create_index(op.f("ix_media_assets_resource_type"), "media_assets", ["resource_type"], unique=False)
    op.create_index(op.f("ix_media_assets_status"), "media_assets", ["status"], unique=False)
    op.create_index(op.f("ix_media_assets_deleted_at"), "media_assets", ["deleted_at"], unique=False)
    op.create_index(op.f("ix_media_assets_archive_event_id"), "media_assets", ["archive_event_id"], unique=False)
    op.create_index(op.f("ix_media_assets_format"), "media_assets", ["format"], unique=False)
    op.create_index(op.f("ix_media_assets_created_at"), "media_assets", ["created_at"], unique=False)
    op.create_index(op.f("ix_media_assets_updated_at"), "media_assets", ["updated_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_media_assets_updated_at"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_created_at"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_format"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_archive_event_id"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_deleted_at"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_status"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_resource_type"), table_name="media_assets")
    op.drop_table("media_assets")

    asset_status.drop(op.get_bind(), checkfirst=True)
