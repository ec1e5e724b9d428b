import hmac
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from media_service.core.config import settings
from media_service.db.session import get_session
from media_service.services.assets import AssetService
from media_service.services.media_platform import get_media_platform_client
from media_service.services.metadata_store import get_metadata_store
from media_service.services.owner_service import get_owner_service_client
from media_service.services.webhooks import WebhookProcessor

__all__ = ["get_session", "get_asset_service", "get_webhook_processor", "require_admin_key"]


async def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    expected = (settings.admin_api_key or "").strip()
    if not expected:
        return
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


@lru_cache
def get_asset_service() -> AssetService:
    return AssetService(
        metadata_store=get_metadata_store(),
        owner_client=get_owner_service_client(),
        platform=get_media_platform_client(),
    )


def get_webhook_processor(service: AssetService = Depends(get_asset_service)) -> WebhookProcessor:
    return WebhookProcessor(service)
