from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from media_service.core.errors import AlreadyExistsError, NotFoundError
from media_service.models.asset import AssetStatus, MediaAsset
from media_service.services import pagination
from media_service.services.pagination import DATETIME_FIELDS, PageRequest, SortDirection
from media_service.services.patch import AssetPatch

logger = logging.getLogger(__name__)


class AssetScope(str, enum.Enum):
    all = "all"
    upload_url_generated = "upload_url_generated"
    active = "active"
    archived = "archived"
    broken = "broken"


SCOPE_STATUSES: dict[AssetScope, frozenset[AssetStatus]] = {
    AssetScope.all: frozenset(AssetStatus),
    AssetScope.upload_url_generated: frozenset({AssetStatus.upload_url_generated}),
    AssetScope.active: frozenset({AssetStatus.active}),
    AssetScope.archived: frozenset({AssetStatus.archived}),
    AssetScope.broken: frozenset({AssetStatus.broken}),
}


@dataclass(slots=True)
class AssetFilter:
    scopes: tuple[AssetScope, ...] = (AssetScope.active,)
    ids: Sequence[UUID] | None = None

    def statuses(self) -> set[AssetStatus]:
        allowed: set[AssetStatus] = set()
        for scope in self.scopes:
            allowed |= SCOPE_STATUSES[scope]
        return allowed


def _order_column(field: str):
    column = getattr(MediaAsset, field)
    if field in DATETIME_FIELDS:
        return column
    # Nullable text columns sort as empty strings so the cursor never holds NULL.
    return func.coalesce(column, "")


def _filter_clauses(asset_filter: AssetFilter) -> list:
    clauses = []
    statuses = asset_filter.statuses()
    if statuses != set(AssetStatus):
        clauses.append(MediaAsset.status.in_(sorted(statuses, key=lambda item: item.value)))
    if asset_filter.ids is not None:
        clauses.append(MediaAsset.id.in_(list(asset_filter.ids)))
    return clauses


async def get_asset(
    session: AsyncSession,
    asset_id: UUID,
    *,
    asset_filter: AssetFilter | None = None,
    for_update: bool = False,
) -> MediaAsset:
    stmt = select(MediaAsset).where(MediaAsset.id == asset_id)
    if asset_filter is not None:
        stmt = stmt.where(*_filter_clauses(asset_filter))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    asset = await session.scalar(stmt)
    if asset is None:
        raise NotFoundError("Asset not found", asset_id=str(asset_id))
    return asset


async def find_by_reference(
    session: AsyncSession,
    *,
    internal_id: str | None = None,
    upload_id: str | None = None,
    external_asset_id: str | None = None,
    public_id: str | None = None,
    for_update: bool = False,
) -> MediaAsset | None:
    """Resolve an asset from platform references, most specific first."""
    candidates = []
    if internal_id:
        try:
            candidates.append(MediaAsset.id == UUID(str(internal_id)))
        except ValueError:
            logger.warning("webhook_invalid_internal_id", extra={"internal_id": internal_id})
    if upload_id:
        candidates.append(MediaAsset.external_upload_id == upload_id)
    if external_asset_id:
        candidates.append(MediaAsset.external_asset_id == external_asset_id)
    if public_id:
        candidates.append(MediaAsset.public_id == public_id)

    for clause in candidates:
        stmt = select(MediaAsset).where(clause)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        asset = await session.scalar(stmt)
        if asset is not None:
            return asset
    return None


async def list_assets(
    session: AsyncSession,
    asset_filter: AssetFilter,
    page: PageRequest,
    *,
    default_page_size: int,
    max_page_size: int,
) -> tuple[list[MediaAsset], str]:
    """Return one page of assets and the token for the next page ("" when exhausted)."""
    order_by = pagination.ensure_orderable(page.order_by)
    page_size = pagination.normalize_page_size(page.page_size, default=default_page_size, maximum=max_page_size)
    cursor = pagination.decode_cursor(page.page_token, field=order_by)

    column = _order_column(order_by)
    descending = page.direction == SortDirection.desc
    stmt = select(MediaAsset).where(*_filter_clauses(asset_filter))
    if cursor is not None:
        if descending:
            stmt = stmt.where(
                or_(column < cursor.value, and_(column == cursor.value, MediaAsset.id < cursor.id))
            )
        else:
            stmt = stmt.where(
                or_(column > cursor.value, and_(column == cursor.value, MediaAsset.id > cursor.id))
            )
    if descending:
        stmt = stmt.order_by(column.desc(), MediaAsset.id.desc())
    else:
        stmt = stmt.order_by(column.asc(), MediaAsset.id.asc())
    stmt = stmt.limit(page_size + 1)

    rows = list((await session.execute(stmt)).scalars().all())
    if len(rows) <= page_size:
        return rows, ""
    rows = rows[:page_size]
    return rows, pagination.encode_cursor_for(rows[-1], order_by)


async def insert_asset(session: AsyncSession, asset: MediaAsset) -> MediaAsset:
    session.add(asset)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise AlreadyExistsError("Asset with the same platform reference already exists") from exc
    return asset


def apply_patch(session: AsyncSession, asset: MediaAsset, patch: AssetPatch) -> list[str]:
    changed = patch.apply(asset)
    if changed:
        session.add(asset)
    return changed


async def delete_asset(session: AsyncSession, asset: MediaAsset) -> None:
    await session.delete(asset)
    await session.flush()


async def existing_ids(session: AsyncSession, asset_ids: Sequence[UUID]) -> set[UUID]:
    if not asset_ids:
        return set()
    rows = await session.execute(select(MediaAsset.id).where(MediaAsset.id.in_(list(asset_ids))))
    return set(rows.scalars().all())


async def known_public_ids(session: AsyncSession, public_ids: Sequence[str]) -> set[str]:
    if not public_ids:
        return set()
    rows = await session.execute(select(MediaAsset.public_id).where(MediaAsset.public_id.in_(list(public_ids))))
    return {value for value in rows.scalars().all() if value}
