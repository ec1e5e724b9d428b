from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from media_service.schemas.metadata import Owner


class AuditPayload(BaseModel):
    actor_id: UUID
    actor_name: str
    note: str = ""


class ArchiveRequest(AuditPayload):
    reason: str | None = None


class BeginUploadRequest(BaseModel):
    title: str
    creator_id: str
    actor_id: UUID
    actor_name: str
    public_id: str | None = None
    resource_type: str = Field(default="video", pattern="^(image|video|raw)$")
    owner: Owner | None = None


class OwnersUpdateRequest(BaseModel):
    owners: list[Owner] = Field(default_factory=list)


class UploadCredentialRead(BaseModel):
    upload_url: str
    external_upload_id: str
    public_id: str
    signature: str
    timestamp: int
    api_key: str
    params: dict[str, str]


class AssetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    external_asset_id: str | None = None
    external_upload_id: str | None = None
    public_id: str | None = None
    resource_type: str | None = None
    format: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    aspect_ratio: str | None = None
    resolution_tier: str | None = None
    ingest_type: str | None = None
    state: str | None = None
    upload_status: str | None = None
    asset_created_at: datetime | None = None
    primary_public_playback_id: str | None = None
    primary_signed_playback_id: str | None = None
    platform_error: dict[str, Any] | None = None
    deleted_at: datetime | None = None
    created_by: UUID | None = None
    created_by_name: str | None = None
    archived_by: UUID | None = None
    archived_by_name: str | None = None
    restored_by: UUID | None = None
    restored_by_name: str | None = None
    marked_as_broken_by: UUID | None = None
    marked_as_broken_by_name: str | None = None
    note: str | None = None
    archive_reason: str | None = None
    archive_event_id: str | None = None
    created_at: datetime
    updated_at: datetime

    title: str | None = None
    creator_id: str | None = None
    owners: list[Owner] = Field(default_factory=list)
    tracks: list[dict[str, Any]] = Field(default_factory=list)
    playback_ids: list[dict[str, Any]] = Field(default_factory=list)


class AssetPageRead(BaseModel):
    items: list[AssetRead]
    next_page_token: str = ""


class BeginUploadResponse(BaseModel):
    asset: AssetRead
    upload: UploadCredentialRead


class OwnerChangesRead(BaseModel):
    asset: AssetRead
    to_add: dict[str, list[str]] = Field(default_factory=dict)
    to_delete: dict[str, list[str]] = Field(default_factory=dict)


class ResyncRead(BaseModel):
    asset_id: UUID
    notified: dict[str, dict[str, int]] = Field(default_factory=dict)


class PermanentDeleteRead(BaseModel):
    asset_id: UUID
    completed_steps: list[str]
