"""Opaque cursor tokens for keyset pagination over ``(order field, id)``."""

from __future__ import annotations

import base64
import binascii
import enum
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from media_service.core.errors import InvalidArgumentError

ORDERABLE_FIELDS = frozenset({"created_at", "updated_at", "format", "resource_type"})
DATETIME_FIELDS = frozenset({"created_at", "updated_at"})
DEFAULT_ORDER_FIELD = "created_at"


class SortDirection(str, enum.Enum):
    asc = "asc"
    desc = "desc"


@dataclass(slots=True, frozen=True)
class PageCursor:
    field: str
    value: Any
    id: UUID


@dataclass(slots=True)
class PageRequest:
    page_size: int = 0
    page_token: str = ""
    order_by: str = DEFAULT_ORDER_FIELD
    direction: SortDirection = SortDirection.desc


def ensure_orderable(field: str) -> str:
    if field not in ORDERABLE_FIELDS:
        raise InvalidArgumentError(f"Cannot order by {field!r}", order_by=field)
    return field


def normalize_page_size(page_size: int, *, default: int, maximum: int) -> int:
    if page_size == 0:
        return default
    if page_size < 1 or page_size > maximum:
        raise InvalidArgumentError(f"page_size must be between 1 and {maximum}", page_size=page_size)
    return page_size


def as_utc(value: datetime) -> datetime:
    # sqlite hands back naive values; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def cursor_value(field: str, value: Any) -> Any:
    """Normalize a row value to what the listing query compares against."""
    if field in DATETIME_FIELDS:
        if not isinstance(value, datetime):
            raise InvalidArgumentError("Cursor value is not a timestamp", order_by=field)
        return as_utc(value)
    return value or ""


def encode_cursor(field: str, value: Any, asset_id: UUID) -> str:
    ensure_orderable(field)
    normalized = cursor_value(field, value)
    raw_value = normalized.isoformat() if isinstance(normalized, datetime) else normalized
    payload = json.dumps({"f": field, "v": raw_value, "id": str(asset_id)}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).rstrip(b"=").decode("ascii")


def encode_cursor_for(asset: Any, field: str) -> str:
    return encode_cursor(field, getattr(asset, field), asset.id)


def _b64decode(token: str) -> bytes:
    padded = token + "=" * (-len(token) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise InvalidArgumentError("Malformed page token") from exc


def decode_cursor(token: str, *, field: str) -> PageCursor | None:
    """Decode ``token`` for a listing ordered by ``field``; an empty token means the first page."""
    if not token:
        return None
    ensure_orderable(field)
    try:
        payload = json.loads(_b64decode(token))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidArgumentError("Malformed page token") from exc
    if not isinstance(payload, dict) or set(payload) != {"f", "v", "id"}:
        raise InvalidArgumentError("Malformed page token")
    if payload["f"] != field:
        raise InvalidArgumentError("Page token was issued for a different order field", order_by=field)
    try:
        asset_id = UUID(str(payload["id"]))
    except ValueError as exc:
        raise InvalidArgumentError("Malformed page token") from exc

    raw_value = payload["v"]
    if not isinstance(raw_value, str):
        raise InvalidArgumentError("Malformed page token")
    value: Any = raw_value
    if field in DATETIME_FIELDS:
        try:
            parsed = datetime.fromisoformat(raw_value)
        except ValueError as exc:
            raise InvalidArgumentError("Malformed page token") from exc
        if parsed.tzinfo is None:
            raise InvalidArgumentError("Malformed page token")
        value = parsed.astimezone(timezone.utc)
    return PageCursor(field=field, value=value, id=asset_id)
