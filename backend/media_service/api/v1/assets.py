from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from media_service.core.dependencies import get_asset_service, get_session, require_admin_key
from media_service.schemas.asset import (
    ArchiveRequest,
    AssetPageRead,
    AssetRead,
    AuditPayload,
    BeginUploadRequest,
    BeginUploadResponse,
    OwnerChangesRead,
    OwnersUpdateRequest,
    PermanentDeleteRead,
    ResyncRead,
    UploadCredentialRead,
)
from media_service.schemas.metadata import Owner
from media_service.services.asset_repository import AssetScope
from media_service.services.assets import AssetService, AssetView, AuditTrailOptions, asset_to_read
from media_service.services.pagination import PageRequest, SortDirection

router = APIRouter(prefix="/admin/assets", tags=["assets"], dependencies=[Depends(require_admin_key)])


def page_params(
    page_size: int = Query(default=0, ge=0),
    page_token: str = Query(default=""),
    order_by: str = Query(default="created_at"),
    direction: Literal["asc", "desc"] = Query(default="desc"),
) -> PageRequest:
    return PageRequest(
        page_size=page_size,
        page_token=page_token,
        order_by=order_by,
        direction=SortDirection(direction),
    )


def _audit(payload: AuditPayload) -> AuditTrailOptions:
    return AuditTrailOptions(actor_id=payload.actor_id, actor_name=payload.actor_name, note=payload.note)


def _page(views: list[AssetView], next_token: str) -> AssetPageRead:
    return AssetPageRead(items=[asset_to_read(view) for view in views], next_page_token=next_token)


@router.post("/uploads", response_model=BeginUploadResponse, status_code=status.HTTP_201_CREATED)
async def begin_upload(
    payload: BeginUploadRequest,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> BeginUploadResponse:
    view, credential = await service.begin_upload(
        session,
        title=payload.title,
        creator_id=payload.creator_id,
        audit=AuditTrailOptions(actor_id=payload.actor_id, actor_name=payload.actor_name),
        owner=payload.owner,
        public_id=payload.public_id,
        resource_type=payload.resource_type,
    )
    upload = UploadCredentialRead(
        upload_url=credential.upload_url,
        external_upload_id=credential.external_upload_id,
        public_id=credential.public_id,
        signature=credential.signature,
        timestamp=credential.timestamp,
        api_key=credential.api_key,
        params=credential.params,
    )
    return BeginUploadResponse(asset=asset_to_read(view), upload=upload)


@router.get("", response_model=AssetPageRead)
async def list_assets(
    page: PageRequest = Depends(page_params),
    scope: Literal["active", "upload_url_generated", "all"] = Query(default="active"),
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetPageRead:
    views, next_token = await service.list_assets(session, page, scopes=(AssetScope(scope),))
    return _page(views, next_token)


@router.get("/archived", response_model=AssetPageRead)
async def list_archived_assets(
    page: PageRequest = Depends(page_params),
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetPageRead:
    return _page(*await service.list_archived(session, page))


@router.get("/broken", response_model=AssetPageRead)
async def list_broken_assets(
    page: PageRequest = Depends(page_params),
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetPageRead:
    return _page(*await service.list_broken(session, page))


@router.get("/unowned", response_model=AssetPageRead)
async def list_unowned_assets(
    page: PageRequest = Depends(page_params),
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetPageRead:
    return _page(*await service.list_unowned(session, page))


@router.get("/{asset_id}", response_model=AssetRead)
async def get_asset(
    asset_id: UUID,
    include_archived: bool = Query(default=False),
    include_broken: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetRead:
    scopes = [AssetScope.active]
    if include_archived:
        scopes.append(AssetScope.archived)
    if include_broken:
        scopes.append(AssetScope.broken)
    return asset_to_read(await service.get(session, asset_id, scopes=scopes))


@router.post("/{asset_id}/archive", response_model=AssetRead)
async def archive_asset(
    asset_id: UUID,
    payload: ArchiveRequest,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetRead:
    view = await service.archive(session, asset_id, _audit(payload), reason=payload.reason)
    return asset_to_read(view)


@router.post("/{asset_id}/broken", response_model=AssetRead)
async def mark_asset_broken(
    asset_id: UUID,
    payload: AuditPayload,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetRead:
    return asset_to_read(await service.mark_as_broken(session, asset_id, _audit(payload)))


@router.post("/{asset_id}/restore", response_model=AssetRead)
async def restore_asset(
    asset_id: UUID,
    payload: AuditPayload,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetRead:
    return asset_to_read(await service.restore(session, asset_id, _audit(payload)))


@router.delete("/{asset_id}", response_model=PermanentDeleteRead)
async def delete_asset_permanently(
    asset_id: UUID,
    payload: AuditPayload,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> PermanentDeleteRead:
    completed = await service.permanent_delete(session, asset_id, _audit(payload))
    return PermanentDeleteRead(asset_id=asset_id, completed_steps=completed)


@router.post("/{asset_id}/owners", response_model=AssetRead)
async def add_asset_owner(
    asset_id: UUID,
    payload: Owner,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetRead:
    return asset_to_read(await service.add_owner(session, asset_id, payload))


@router.delete("/{asset_id}/owners", response_model=AssetRead)
async def remove_asset_owner(
    asset_id: UUID,
    payload: Owner,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> AssetRead:
    return asset_to_read(await service.remove_owner(session, asset_id, payload))


@router.put("/{asset_id}/owners", response_model=OwnerChangesRead)
async def replace_asset_owners(
    asset_id: UUID,
    payload: OwnersUpdateRequest,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> OwnerChangesRead:
    view, diff = await service.update_owners(session, asset_id, payload.owners)
    return OwnerChangesRead(
        asset=asset_to_read(view),
        to_add={owner_type: sorted(ids) for owner_type, ids in diff.to_add.items()},
        to_delete={owner_type: sorted(ids) for owner_type, ids in diff.to_delete.items()},
    )


@router.post("/{asset_id}/owners/resync", response_model=ResyncRead)
async def resync_asset_owners(
    asset_id: UUID,
    session: AsyncSession = Depends(get_session),
    service: AssetService = Depends(get_asset_service),
) -> ResyncRead:
    notified = await service.resync_owners(session, asset_id)
    return ResyncRead(asset_id=asset_id, notified=notified)
