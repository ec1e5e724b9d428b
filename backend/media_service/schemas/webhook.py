from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PlaybackId(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    policy: str = "public"


class DeletedResource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    asset_id: str | None = None
    public_id: str | None = None
    external_id: str | None = None


class PlatformEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    external_id: str | None = None
    upload_id: str | None = None
    asset_id: str | None = None
    public_id: str | None = None
    resource_type: str | None = None
    format: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    aspect_ratio: str | None = None
    resolution_tier: str | None = None
    ingest_type: str | None = None
    status: str | None = None
    upload_status: str | None = None
    created_at: datetime | None = None
    playback_ids: list[PlaybackId] = Field(default_factory=list)
    tracks: list[dict[str, Any]] = Field(default_factory=list)
    errors: dict[str, Any] | None = None
    from_public_id: str | None = None
    to_public_id: str | None = None
    resources: list[DeletedResource] = Field(default_factory=list)


class PlatformEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, max_length=256)
    type: str = Field(min_length=1, max_length=128)
    created_at: datetime | None = None
    data: PlatformEventData = Field(default_factory=PlatformEventData)


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str | None = None
    type: str | None = None
    outcome: str
    asset_ids: list[str] = Field(default_factory=list)
