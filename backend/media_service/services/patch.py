from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from media_service.core.errors import InvalidArgumentError
from media_service.services.pagination import as_utc


class _Unset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

# Scalar columns that webhooks and reconciliation may write. Status and audit
# columns only move through the lifecycle operations.
PATCHABLE_FIELDS = frozenset(
    {
        "external_asset_id",
        "external_upload_id",
        "public_id",
        "resource_type",
        "format",
        "width",
        "height",
        "duration",
        "aspect_ratio",
        "resolution_tier",
        "ingest_type",
        "state",
        "upload_status",
        "asset_created_at",
        "primary_public_playback_id",
        "primary_signed_playback_id",
        "platform_error",
    }
)


@dataclass(slots=True)
class AssetPatch:
    """Partial update of an asset row; ``UNSET`` fields are left alone, ``None`` clears."""

    external_asset_id: Any = UNSET
    external_upload_id: Any = UNSET
    public_id: Any = UNSET
    resource_type: Any = UNSET
    format: Any = UNSET
    width: Any = UNSET
    height: Any = UNSET
    duration: Any = UNSET
    aspect_ratio: Any = UNSET
    resolution_tier: Any = UNSET
    ingest_type: Any = UNSET
    state: Any = UNSET
    upload_status: Any = UNSET
    asset_created_at: Any = UNSET
    primary_public_playback_id: Any = UNSET
    primary_signed_playback_id: Any = UNSET
    platform_error: Any = UNSET

    @classmethod
    def from_changes(cls, current: Any, candidate: dict[str, Any]) -> "AssetPatch":
        """Build a patch holding only the non-empty candidate values that differ from ``current``."""
        patch = cls()
        for name, value in candidate.items():
            if name not in PATCHABLE_FIELDS:
                raise InvalidArgumentError(f"Field {name!r} cannot be patched", field=name)
            if value is None or value == "" or value == {} or value == []:
                continue
            existing = getattr(current, name, None)
            if isinstance(value, datetime) and isinstance(existing, datetime):
                if as_utc(value) == as_utc(existing):
                    continue
            elif existing == value:
                continue
            setattr(patch, name, value)
        return patch

    def changes(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self) if getattr(self, item.name) is not UNSET}

    def is_empty(self) -> bool:
        return not self.changes()

    def apply(self, target: Any) -> list[str]:
        changed = []
        for name, value in self.changes().items():
            setattr(target, name, value)
            changed.append(name)
        return changed
