from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from media_service.core.dependencies import get_session, get_webhook_processor
from media_service.schemas.webhook import WebhookAck
from media_service.services.webhooks import WebhookProcessor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/platform", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def platform_webhook(
    request: Request,
    x_platform_signature: str | None = Header(default=None),
    x_platform_timestamp: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookAck:
    payload = await request.body()
    return await processor.handle(
        session,
        payload,
        signature=x_platform_signature,
        timestamp=x_platform_timestamp,
    )
