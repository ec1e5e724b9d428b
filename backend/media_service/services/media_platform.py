from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import httpx

from media_service.core.config import settings
from media_service.core.errors import ExternalServiceError, InvalidArgumentError

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("video", "image")


@dataclass(slots=True)
class UploadCredential:
    upload_url: str
    external_upload_id: str
    external_asset_id: str | None
    public_id: str
    signature: str
    timestamp: int
    api_key: str
    params: dict[str, str]


@dataclass(slots=True)
class RemoteAsset:
    public_id: str
    resource_type: str
    asset_id: str | None = None
    format: str | None = None
    created_at: str | None = None


def parse_timestamp(raw: str) -> datetime:
    """Parse an RFC 3339 timestamp header into an aware UTC datetime."""
    value = (raw or "").strip()
    if not value:
        raise InvalidArgumentError("Missing webhook timestamp")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidArgumentError("Malformed webhook timestamp") from exc
    if parsed.tzinfo is None:
        raise InvalidArgumentError("Webhook timestamp must carry a timezone")
    return parsed.astimezone(timezone.utc)


class MediaPlatformClient:
    """Adapter for the media platform's upload, admin and webhook signing APIs."""

    def __init__(
        self,
        *,
        base_url: str,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        upload_folder: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self.upload_folder = upload_folder.strip("/")
        self._timeout = timeout
        self._transport = transport

    def sign(self, params: dict[str, Any]) -> str:
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
        return hmac.new(self._api_secret.encode("utf-8"), to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue_upload_credential(
        self,
        *,
        asset_id: str,
        public_id: str | None = None,
        resource_type: str = "video",
        metadata: dict[str, str] | None = None,
    ) -> UploadCredential:
        """Return signed direct-upload parameters; the client uploads the bytes itself."""
        timestamp = int(time.time())
        upload_id = f"upl_{uuid4().hex}"
        name = (public_id or asset_id).strip("/")
        if self.upload_folder and not name.startswith(f"{self.upload_folder}/"):
            name = f"{self.upload_folder}/{name}"
        context = "|".join(f"{key}={value}" for key, value in sorted((metadata or {}).items()))
        params = {
            "public_id": name,
            "timestamp": str(timestamp),
            "context": f"external_id={asset_id}|upload_id={upload_id}" + (f"|{context}" if context else ""),
        }
        return UploadCredential(
            upload_url=f"{self._base_url}/{self._cloud_name}/{resource_type}/upload",
            external_upload_id=upload_id,
            external_asset_id=None,
            public_id=name,
            signature=self.sign(params),
            timestamp=timestamp,
            api_key=self._api_key,
            params=params,
        )

    def verify_signature(
        self,
        payload: bytes,
        signature: str,
        timestamp: str,
        *,
        valid_for: int,
        future_skew: int = 300,
        now: datetime | None = None,
    ) -> bool:
        """Check the HMAC-SHA256 of ``payload + timestamp`` and that the timestamp is fresh."""
        issued_at = parse_timestamp(timestamp)
        current = now or datetime.now(timezone.utc)
        if current - issued_at > timedelta(seconds=valid_for):
            return False
        if issued_at - current > timedelta(seconds=future_skew):
            return False
        return hmac.compare_digest(self.sign_payload(payload, timestamp), (signature or "").strip().lower())

    def sign_payload(self, payload: bytes, timestamp: str) -> str:
        return hmac.new(
            self._api_secret.encode("utf-8"), payload + timestamp.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self._base_url}/{self._cloud_name}",
            timeout=self._timeout,
            auth=(self._api_key, self._api_secret),
            transport=self._transport,
        )

    async def delete_remote_asset(self, public_id: str, resource_type: str | None = None) -> None:
        """Destroy the remote asset; a resource that is already gone counts as deleted."""
        kind = resource_type or "video"
        try:
            async with self._client() as client:
                resp = await client.delete(f"/resources/{kind}/upload", params={"public_ids[]": public_id})
                if resp.status_code == 404:
                    logger.info("platform_asset_already_deleted", extra={"public_id": public_id})
                    return
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                "Media platform delete failed", failures=[f"delete {public_id}: {exc.__class__.__name__}"]
            ) from exc
        outcome = (data.get("deleted") or {}).get(public_id)
        if outcome not in (None, "deleted", "not_found"):
            raise ExternalServiceError("Media platform delete failed", failures=[f"delete {public_id}: {outcome}"])

    async def list_assets_in_folder(self, folder: str | None = None) -> list[RemoteAsset]:
        prefix = (folder if folder is not None else self.upload_folder).strip("/")
        found: list[RemoteAsset] = []
        try:
            async with self._client() as client:
                for resource_type in RESOURCE_TYPES:
                    next_cursor: str | None = None
                    while True:
                        params: dict[str, Any] = {"prefix": f"{prefix}/" if prefix else "", "max_results": 500}
                        if next_cursor:
                            params["next_cursor"] = next_cursor
                        resp = await client.get(f"/resources/{resource_type}/upload", params=params)
                        resp.raise_for_status()
                        data = resp.json()
                        for item in data.get("resources") or []:
                            found.append(
                                RemoteAsset(
                                    public_id=str(item.get("public_id") or ""),
                                    resource_type=str(item.get("resource_type") or resource_type),
                                    asset_id=item.get("asset_id"),
                                    format=item.get("format"),
                                    created_at=item.get("created_at"),
                                )
                            )
                        next_cursor = data.get("next_cursor")
                        if not next_cursor:
                            break
        except httpx.HTTPError as exc:
            raise ExternalServiceError("Media platform listing failed", failures=[exc.__class__.__name__]) from exc
        return [item for item in found if item.public_id]


def get_media_platform_client() -> MediaPlatformClient:
    return MediaPlatformClient(
        base_url=settings.platform_api_base_url,
        cloud_name=settings.platform_cloud_name,
        api_key=settings.platform_api_key,
        api_secret=settings.platform_api_secret,
        upload_folder=settings.platform_upload_folder,
        timeout=settings.platform_timeout_seconds,
    )
