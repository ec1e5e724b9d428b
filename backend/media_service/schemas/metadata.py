from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Owner(BaseModel):
    """An external entity that references an asset, routed by ``owner_type``."""

    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(min_length=1, max_length=256)
    owner_type: str = Field(min_length=1, max_length=64)


class AssetMetadata(BaseModel):
    key: str
    title: str | None = None
    creator_id: str | None = None
    owners: list[Owner] = Field(default_factory=list)
    tracks: list[dict[str, Any]] = Field(default_factory=list)
    playback_ids: list[dict[str, Any]] = Field(default_factory=list)
    version: int = 0
    created_at: datetime | None = None

    def has_owner(self, owner: Owner) -> bool:
        return owner in self.owners
