from __future__ import annotations

import enum
import os
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Enum, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from media_service.db.base import Base


class AssetStatus(str, enum.Enum):
    upload_url_generated = "upload_url_generated"
    active = "active"
    archived = "archived"
    broken = "broken"


class UploadStatus(str, enum.Enum):
    preparing = "preparing"
    ready = "ready"
    errored = "errored"
    deleted = "deleted"


def new_asset_id() -> uuid.UUID:
    """Return a time-ordered UUID (version 7 layout: 48-bit ms timestamp, then random bits)."""
    unix_ms = time.time_ns() // 1_000_000
    rand = int.from_bytes(os.urandom(10), "big")
    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & ((1 << 62) - 1)
    return uuid.UUID(int=value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaAsset(Base):
    __tablename__ = "media_assets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=new_asset_id)
    external_asset_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    external_upload_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    public_id: Mapped[str | None] = mapped_column(String(512), nullable=True, unique=True)
    resource_type: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    status: Mapped[AssetStatus] = mapped_column(
        Enum(AssetStatus), nullable=False, default=AssetStatus.upload_url_generated, index=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    archived_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    archived_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    restored_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    restored_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    marked_as_broken_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    marked_as_broken_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    archive_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    archive_event_id: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)

    format: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    aspect_ratio: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolution_tier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ingest_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    upload_status: Mapped[str | None] = mapped_column(String(16), nullable=True, default=UploadStatus.preparing.value)
    asset_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    primary_public_playback_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    primary_signed_playback_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    platform_error: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Python-side timestamps keep cursor comparisons consistent across backends.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, index=True
    )
