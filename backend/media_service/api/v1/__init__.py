from fastapi import APIRouter

from media_service.api.v1 import assets, webhooks

api_router = APIRouter()
api_router.include_router(assets.router)
api_router.include_router(webhooks.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
