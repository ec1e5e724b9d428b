from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from media_service.core.config import settings
from media_service.core.errors import (
    AlreadyExistsError,
    ConflictError,
    ExternalServiceError,
    InvalidArgumentError,
    NotFoundError,
)
from media_service.models.asset import AssetStatus, MediaAsset, UploadStatus, new_asset_id
from media_service.schemas.asset import AssetRead
from media_service.schemas.metadata import AssetMetadata, Owner
from media_service.services import asset_repository
from media_service.services.asset_repository import AssetFilter, AssetScope
from media_service.services.media_platform import MediaPlatformClient, UploadCredential
from media_service.services.metadata_store import MetadataStore
from media_service.services.owner_diff import OwnerDiff, add_all, diff_owners, remove_all
from media_service.services.owner_service import OwnerServiceClient, notify_owner_changes
from media_service.services.pagination import PageRequest, encode_cursor_for, normalize_page_size
from media_service.services.saga import Saga

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
ACTOR_NAME_MIN_LEN = 2
ACTOR_NAME_MAX_LEN = 128
NOTE_MIN_LEN = 10
NOTE_MAX_LEN = 512
EVENT_ID_MAX_LEN = 256
TITLE_MAX_LEN = 255

ALLOWED_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    AssetStatus.upload_url_generated: frozenset({AssetStatus.active, AssetStatus.broken}),
    AssetStatus.active: frozenset({AssetStatus.archived, AssetStatus.broken}),
    AssetStatus.broken: frozenset({AssetStatus.archived}),
    AssetStatus.archived: frozenset({AssetStatus.active}),
}
# Platform deletions may archive an upload that never became active.
SYSTEM_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    **ALLOWED_TRANSITIONS,
    AssetStatus.upload_url_generated: frozenset({AssetStatus.active, AssetStatus.broken, AssetStatus.archived}),
}

OWNER_LOCKED_STATUSES = frozenset({AssetStatus.archived, AssetStatus.broken})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class AuditTrailOptions:
    actor_name: str
    note: str = ""
    actor_id: UUID | None = None
    event_id: str | None = None

    @classmethod
    def system(cls, note: str, *, event_id: str | None = None) -> "AuditTrailOptions":
        return cls(actor_name=SYSTEM_ACTOR, note=note, event_id=event_id)

    def validate(self, *, require_actor: bool = True, require_note: bool = True) -> None:
        name = (self.actor_name or "").strip()
        if not ACTOR_NAME_MIN_LEN <= len(name) <= ACTOR_NAME_MAX_LEN:
            raise InvalidArgumentError(
                f"actor_name must be {ACTOR_NAME_MIN_LEN}-{ACTOR_NAME_MAX_LEN} characters", field="actor_name"
            )
        if require_actor and self.actor_id is None:
            raise InvalidArgumentError("actor_id is required", field="actor_id")
        note = (self.note or "").strip()
        if require_note and not NOTE_MIN_LEN <= len(note) <= NOTE_MAX_LEN:
            raise InvalidArgumentError(f"note must be {NOTE_MIN_LEN}-{NOTE_MAX_LEN} characters", field="note")
        if len(note) > NOTE_MAX_LEN:
            raise InvalidArgumentError(f"note must be at most {NOTE_MAX_LEN} characters", field="note")
        if self.event_id is not None and len(self.event_id) > EVENT_ID_MAX_LEN:
            raise InvalidArgumentError(f"event_id must be at most {EVENT_ID_MAX_LEN} characters", field="event_id")
        self.actor_name = name
        self.note = note


@dataclass(slots=True)
class AssetView:
    asset: MediaAsset
    metadata: AssetMetadata | None


def ensure_transition(asset: MediaAsset, target: AssetStatus, *, system: bool = False) -> None:
    table = SYSTEM_TRANSITIONS if system else ALLOWED_TRANSITIONS
    if target not in table[asset.status]:
        raise ConflictError(
            f"Cannot move asset from {asset.status.value} to {target.value}",
            asset_id=str(asset.id),
            status=asset.status.value,
        )


def mark_archived(asset: MediaAsset, audit: AuditTrailOptions, *, reason: str | None = None) -> None:
    asset.status = AssetStatus.archived
    asset.deleted_at = _now()
    asset.archived_by = audit.actor_id
    asset.archived_by_name = audit.actor_name
    asset.archive_reason = reason or audit.note or None
    if audit.event_id:
        asset.archive_event_id = audit.event_id
    if audit.note:
        asset.note = audit.note


def metadata_key(asset_id: UUID) -> str:
    return str(asset_id)


def _dedupe_owners(owners: Sequence[Owner]) -> list[Owner]:
    seen: set[Owner] = set()
    unique: list[Owner] = []
    for owner in owners:
        if owner in seen:
            continue
        seen.add(owner)
        unique.append(owner)
    return unique


class AssetService:
    """Lifecycle operations over the canonical row, its metadata document and the owner services.

    Each operation validates, mutates the canonical store in one transaction and
    commits before any metadata or remote side effect runs.
    """

    def __init__(
        self,
        *,
        metadata_store: MetadataStore,
        owner_client: OwnerServiceClient,
        platform: MediaPlatformClient,
        default_page_size: int | None = None,
        max_page_size: int | None = None,
        notify_concurrency: int | None = None,
    ) -> None:
        self.metadata_store = metadata_store
        self.owner_client = owner_client
        self.platform = platform
        self.default_page_size = default_page_size or settings.default_page_size
        self.max_page_size = max_page_size or settings.max_page_size
        self.notify_concurrency = notify_concurrency or settings.owner_notify_concurrency

    def _ensure_owner_type(self, owner: Owner) -> None:
        if not self.owner_client.supports(owner.owner_type):
            raise InvalidArgumentError(f"Unknown owner type {owner.owner_type!r}", owner_type=owner.owner_type)

    async def notify(self, asset_id: UUID, diff: OwnerDiff) -> dict[str, dict[str, int]]:
        return await notify_owner_changes(self.owner_client, asset_id, diff, concurrency=self.notify_concurrency)

    async def _view(self, asset: MediaAsset) -> AssetView:
        metadata = await self.metadata_store.get(metadata_key(asset.id))
        if metadata is None:
            logger.warning("asset_metadata_missing", extra={"asset_id": asset.id})
        return AssetView(asset=asset, metadata=metadata)

    async def begin_upload(
        self,
        session: AsyncSession,
        *,
        title: str,
        creator_id: str,
        audit: AuditTrailOptions,
        owner: Owner | None = None,
        public_id: str | None = None,
        resource_type: str = "video",
    ) -> tuple[AssetView, UploadCredential]:
        audit.validate(require_note=False)
        title = (title or "").strip()
        if not title or len(title) > TITLE_MAX_LEN:
            raise InvalidArgumentError(f"title must be 1-{TITLE_MAX_LEN} characters", field="title")
        creator_id = (creator_id or "").strip()
        if not creator_id:
            raise InvalidArgumentError("creator_id is required", field="creator_id")
        if owner is not None:
            self._ensure_owner_type(owner)

        asset_id = new_asset_id()
        credential = self.platform.issue_upload_credential(
            asset_id=str(asset_id),
            public_id=(public_id or "").strip() or None,
            resource_type=resource_type,
            metadata={"title": title},
        )
        asset = MediaAsset(
            id=asset_id,
            status=AssetStatus.upload_url_generated,
            external_upload_id=credential.external_upload_id,
            external_asset_id=credential.external_asset_id,
            public_id=credential.public_id,
            resource_type=resource_type,
            upload_status=UploadStatus.preparing.value,
            created_by=audit.actor_id,
            created_by_name=audit.actor_name,
        )
        await asset_repository.insert_asset(session, asset)
        metadata = await self.metadata_store.create(
            AssetMetadata(
                key=metadata_key(asset_id),
                title=title,
                creator_id=creator_id,
                owners=[owner] if owner else [],
                created_at=_now(),
            )
        )
        await session.commit()
        logger.info(
            "asset_upload_started",
            extra={"asset_id": asset_id, "public_id": credential.public_id, "actor_id": audit.actor_id},
        )

        if owner is not None:
            await self.owner_client.add(asset_id, owner.owner_id, owner.owner_type)
        return AssetView(asset=asset, metadata=metadata), credential

    async def get(self, session: AsyncSession, asset_id: UUID, *, scopes: Sequence[AssetScope] = (AssetScope.active,)) -> AssetView:
        asset = await asset_repository.get_asset(session, asset_id, asset_filter=AssetFilter(scopes=tuple(scopes)))
        return await self._view(asset)

    async def get_with_archived(self, session: AsyncSession, asset_id: UUID) -> AssetView:
        return await self.get(session, asset_id, scopes=(AssetScope.active, AssetScope.archived))

    async def get_with_broken(self, session: AsyncSession, asset_id: UUID) -> AssetView:
        return await self.get(session, asset_id, scopes=(AssetScope.active, AssetScope.broken))

    async def list_assets(
        self,
        session: AsyncSession,
        page: PageRequest,
        *,
        scopes: Sequence[AssetScope] = (AssetScope.active,),
    ) -> tuple[list[AssetView], str]:
        rows, next_token = await asset_repository.list_assets(
            session,
            AssetFilter(scopes=tuple(scopes)),
            page,
            default_page_size=self.default_page_size,
            max_page_size=self.max_page_size,
        )
        return await self._join_metadata(rows), next_token

    async def list_archived(self, session: AsyncSession, page: PageRequest) -> tuple[list[AssetView], str]:
        return await self.list_assets(session, page, scopes=(AssetScope.archived,))

    async def list_broken(self, session: AsyncSession, page: PageRequest) -> tuple[list[AssetView], str]:
        return await self.list_assets(session, page, scopes=(AssetScope.broken,))

    async def list_unowned(self, session: AsyncSession, page: PageRequest) -> tuple[list[AssetView], str]:
        """Active assets without owners; scans forward until a full page is collected."""
        limit = normalize_page_size(page.page_size, default=self.default_page_size, maximum=self.max_page_size)
        scan = PageRequest(page_size=limit, page_token=page.page_token, order_by=page.order_by, direction=page.direction)
        collected: list[AssetView] = []
        while True:
            rows, next_token = await asset_repository.list_assets(
                session,
                AssetFilter(scopes=(AssetScope.active,)),
                scan,
                default_page_size=self.default_page_size,
                max_page_size=self.max_page_size,
            )
            for view in await self._join_metadata(rows):
                if view.metadata.owners:
                    continue
                collected.append(view)
                if len(collected) == limit:
                    if view.asset is rows[-1] and not next_token:
                        return collected, ""
                    return collected, encode_cursor_for(view.asset, page.order_by)
            if not next_token:
                return collected, ""
            scan.page_token = next_token

    async def _join_metadata(self, rows: Sequence[MediaAsset]) -> list[AssetView]:
        if not rows:
            return []
        documents = await self.metadata_store.get_many([metadata_key(row.id) for row in rows])
        views: list[AssetView] = []
        for row in rows:
            metadata = documents.get(metadata_key(row.id))
            if metadata is None:
                logger.warning("asset_metadata_missing", extra={"asset_id": row.id})
                continue
            views.append(AssetView(asset=row, metadata=metadata))
        return views

    async def _locked(self, session: AsyncSession, asset_id: UUID) -> MediaAsset:
        return await asset_repository.get_asset(session, asset_id, for_update=True)

    async def archive(
        self,
        session: AsyncSession,
        asset_id: UUID,
        audit: AuditTrailOptions,
        *,
        reason: str | None = None,
    ) -> AssetView:
        audit.validate()
        asset = await self._locked(session, asset_id)
        if asset.status == AssetStatus.archived:
            raise ConflictError("Asset is already archived", asset_id=str(asset_id))
        if asset.status == AssetStatus.upload_url_generated:
            raise ConflictError("Asset upload has not completed", asset_id=str(asset_id))
        metadata = await self.metadata_store.get(metadata_key(asset_id))
        if metadata is not None and metadata.owners:
            raise ConflictError("Asset still has owners", asset_id=str(asset_id), owners=len(metadata.owners))
        ensure_transition(asset, AssetStatus.archived)
        mark_archived(asset, audit, reason=(reason or "").strip() or None)
        await session.commit()
        logger.info("asset_archived", extra={"asset_id": asset_id, "actor_id": audit.actor_id})

        try:
            await self.owner_client.force_delete_batch([asset_id])
        except ExternalServiceError as exc:
            logger.error("asset_archive_owner_teardown_failed", extra={"asset_id": asset_id, "error": str(exc)})
            raise
        return AssetView(asset=asset, metadata=metadata)

    async def mark_as_broken(self, session: AsyncSession, asset_id: UUID, audit: AuditTrailOptions) -> AssetView:
        audit.validate()
        asset = await self._locked(session, asset_id)
        if asset.status in (AssetStatus.broken, AssetStatus.archived):
            raise ConflictError(f"Asset is {asset.status.value}", asset_id=str(asset_id))
        ensure_transition(asset, AssetStatus.broken)
        asset.status = AssetStatus.broken
        asset.marked_as_broken_by = audit.actor_id
        asset.marked_as_broken_by_name = audit.actor_name
        asset.note = audit.note
        await session.commit()
        logger.info("asset_marked_broken", extra={"asset_id": asset_id, "actor_id": audit.actor_id})

        await self.release_owners(asset_id)
        return await self._view(asset)

    async def release_owners(self, asset_id: UUID) -> dict[str, dict[str, int]]:
        """Remove every owner upstream, then drop the ones that went through from the document."""
        metadata = await self.metadata_store.get(metadata_key(asset_id))
        if metadata is None or not metadata.owners:
            return {}
        error: ExternalServiceError | None = None
        failed_types: set[str] = set()
        results: dict[str, dict[str, int]] = {}
        try:
            results = await self.notify(asset_id, remove_all(metadata.owners))
        except ExternalServiceError as exc:
            error = exc
            failed_types = set(exc.context.get("failed_types") or [])
        released = {owner for owner in metadata.owners if owner.owner_type not in failed_types}

        def _clear(document: AssetMetadata) -> AssetMetadata | None:
            remaining = [owner for owner in document.owners if owner not in released]
            if len(remaining) == len(document.owners):
                return None
            document.owners = remaining
            return document

        await self.metadata_store.update(metadata_key(asset_id), _clear)
        logger.info(
            "asset_owners_released",
            extra={"asset_id": asset_id, "released": len(released), "failed_types": sorted(failed_types)},
        )
        if error is not None:
            raise error
        return results

    async def restore(self, session: AsyncSession, asset_id: UUID, audit: AuditTrailOptions) -> AssetView:
        audit.validate()
        asset = await self._locked(session, asset_id)
        if asset.status != AssetStatus.archived:
            raise ConflictError("Only archived assets can be restored", asset_id=str(asset_id))
        if asset.upload_status == UploadStatus.deleted.value:
            raise ConflictError("Asset was deleted on the media platform", asset_id=str(asset_id))
        ensure_transition(asset, AssetStatus.active)
        asset.status = AssetStatus.active
        asset.deleted_at = None
        asset.restored_by = audit.actor_id
        asset.restored_by_name = audit.actor_name
        asset.note = audit.note
        await session.commit()
        logger.info("asset_restored", extra={"asset_id": asset_id, "actor_id": audit.actor_id})
        return await self._view(asset)

    async def permanent_delete(self, session: AsyncSession, asset_id: UUID, audit: AuditTrailOptions) -> list[str]:
        audit.validate()
        asset = await self._locked(session, asset_id)
        if asset.status != AssetStatus.archived:
            raise ConflictError("Only archived assets can be permanently deleted", asset_id=str(asset_id))
        metadata = await self.metadata_store.get(metadata_key(asset_id))
        if metadata is not None and metadata.owners:
            raise ConflictError("Asset still has owners", asset_id=str(asset_id))
        public_id = asset.public_id
        resource_type = asset.resource_type

        async def _delete_row() -> None:
            await asset_repository.delete_asset(session, asset)
            await session.commit()

        async def _delete_remote() -> None:
            if public_id:
                await self.platform.delete_remote_asset(public_id, resource_type)

        async def _purge_metadata() -> None:
            await self.metadata_store.delete(metadata_key(asset_id))

        saga = (
            Saga("permanent_delete")
            .step("delete_canonical_row", _delete_row)
            .step("delete_remote_asset", _delete_remote)
            .step("purge_metadata", _purge_metadata)
        )
        completed = await saga.run(asset_id=str(asset_id))
        logger.info(
            "asset_permanently_deleted",
            extra={"asset_id": asset_id, "actor_id": audit.actor_id, "public_id": public_id},
        )
        return completed

    async def _owner_mutable(self, session: AsyncSession, asset_id: UUID) -> MediaAsset:
        asset = await self._locked(session, asset_id)
        if asset.status in OWNER_LOCKED_STATUSES:
            raise ConflictError(f"Owners cannot change while asset is {asset.status.value}", asset_id=str(asset_id))
        return asset

    async def add_owner(self, session: AsyncSession, asset_id: UUID, owner: Owner) -> AssetView:
        self._ensure_owner_type(owner)
        asset = await self._owner_mutable(session, asset_id)

        def _add(document: AssetMetadata) -> AssetMetadata:
            if document.has_owner(owner):
                raise AlreadyExistsError("Owner already attached", owner_id=owner.owner_id, owner_type=owner.owner_type)
            document.owners.append(owner)
            return document

        metadata = await self.metadata_store.update(metadata_key(asset_id), _add)
        await session.commit()
        await self.owner_client.add(asset_id, owner.owner_id, owner.owner_type)
        logger.info(
            "asset_owner_added",
            extra={"asset_id": asset_id, "owner_id": owner.owner_id, "owner_type": owner.owner_type},
        )
        return AssetView(asset=asset, metadata=metadata)

    async def remove_owner(self, session: AsyncSession, asset_id: UUID, owner: Owner) -> AssetView:
        self._ensure_owner_type(owner)
        asset = await self._owner_mutable(session, asset_id)

        def _remove(document: AssetMetadata) -> AssetMetadata:
            if not document.has_owner(owner):
                raise NotFoundError("Owner not attached", owner_id=owner.owner_id, owner_type=owner.owner_type)
            document.owners = [item for item in document.owners if item != owner]
            return document

        metadata = await self.metadata_store.update(metadata_key(asset_id), _remove)
        await session.commit()
        await self.owner_client.delete(asset_id, owner.owner_id, owner.owner_type)
        logger.info(
            "asset_owner_removed",
            extra={"asset_id": asset_id, "owner_id": owner.owner_id, "owner_type": owner.owner_type},
        )
        return AssetView(asset=asset, metadata=metadata)

    async def update_owners(
        self, session: AsyncSession, asset_id: UUID, owners: Sequence[Owner]
    ) -> tuple[AssetView, OwnerDiff]:
        desired = _dedupe_owners(owners)
        for owner in desired:
            self._ensure_owner_type(owner)
        asset = await self._owner_mutable(session, asset_id)
        previous: dict[str, list[Owner]] = {}

        def _replace(document: AssetMetadata) -> AssetMetadata | None:
            previous["owners"] = list(document.owners)
            if set(document.owners) == set(desired):
                return None
            document.owners = list(desired)
            return document

        metadata = await self.metadata_store.update(metadata_key(asset_id), _replace)
        await session.commit()
        diff = diff_owners(previous.get("owners", []), desired)
        await self.notify(asset_id, diff)
        logger.info(
            "asset_owners_updated",
            extra={"asset_id": asset_id, "to_add": diff.to_add, "to_delete": diff.to_delete},
        )
        return AssetView(asset=asset, metadata=metadata), diff

    async def resync_owners(self, session: AsyncSession, asset_id: UUID) -> dict[str, dict[str, int]]:
        """Re-issue the upstream calls implied by the stored owner set."""
        asset = await asset_repository.get_asset(session, asset_id)
        status = asset.status
        # No transaction stays open across owner service calls.
        await session.commit()
        if status == AssetStatus.archived:
            await self.owner_client.force_delete_batch([asset_id])
            logger.info("asset_owner_teardown_resynced", extra={"asset_id": asset_id})
            return {owner_type: {"force_delete": 1} for owner_type in self.owner_client.owner_types}
        metadata = await self.metadata_store.get(metadata_key(asset_id))
        if metadata is None:
            raise NotFoundError("Asset metadata not found", asset_id=str(asset_id))
        if status == AssetStatus.broken:
            return await self.release_owners(asset_id)
        if not metadata.owners:
            return {}
        results = await self.notify(asset_id, add_all(metadata.owners))
        logger.info("asset_owners_resynced", extra={"asset_id": asset_id, "results": results})
        return results

    async def purge_orphan_metadata(
        self, session: AsyncSession, *, dry_run: bool = False, grace_seconds: int | None = None
    ) -> list[str]:
        """Delete metadata documents whose canonical row no longer exists.

        Documents created within ``grace_seconds`` are kept: ``begin_upload``
        writes the document before its row commits.
        """
        if grace_seconds is None:
            grace_seconds = settings.metadata_purge_grace_seconds
        cutoff = _now() - timedelta(seconds=grace_seconds)
        keys = await self.metadata_store.keys()
        parsed: dict[str, UUID] = {}
        for key in keys:
            try:
                parsed[key] = UUID(key)
            except ValueError:
                logger.warning("metadata_key_not_an_asset_id", extra={"key": key})
        known = await asset_repository.existing_ids(session, list(parsed.values()))
        candidates = [key for key, asset_id in parsed.items() if asset_id not in known]
        documents = await self.metadata_store.get_many(candidates)
        orphans: list[str] = []
        for key in sorted(candidates):
            created_at = documents[key].created_at if key in documents else None
            if created_at is not None and created_at > cutoff:
                logger.info("metadata_orphan_too_recent", extra={"key": key, "created_at": created_at})
                continue
            orphans.append(key)
        if not dry_run:
            for key in orphans:
                await self.metadata_store.delete(key)
        logger.info("metadata_orphans_purged", extra={"count": len(orphans), "dry_run": dry_run})
        return orphans


def asset_to_read(view: AssetView) -> AssetRead:
    read = AssetRead.model_validate(view.asset)
    read.status = view.asset.status.value
    metadata = view.metadata
    if metadata is not None:
        read.title = metadata.title
        read.creator_id = metadata.creator_id
        read.owners = list(metadata.owners)
        read.tracks = list(metadata.tracks)
        read.playback_ids = list(metadata.playback_ids)
    return read
