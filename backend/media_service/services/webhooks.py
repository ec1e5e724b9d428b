from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from media_service.core.config import settings
from media_service.core.errors import (
    ExternalServiceError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from media_service.models.asset import AssetStatus, MediaAsset, UploadStatus
from media_service.schemas.metadata import AssetMetadata
from media_service.schemas.webhook import DeletedResource, PlatformEvent, WebhookAck
from media_service.services import asset_repository
from media_service.services.assets import (
    SYSTEM_ACTOR,
    AssetService,
    AuditTrailOptions,
    ensure_transition,
    mark_archived,
    metadata_key,
)
from media_service.services.owner_diff import remove_all
from media_service.services.patch import AssetPatch

logger = logging.getLogger(__name__)

_UPLOAD_STATUSES = {item.value for item in UploadStatus}
DELETE_NOTE = "archived after the media platform reported the asset deleted"
DELETE_REASON = "deleted on media platform"


def parse_event(payload: bytes) -> PlatformEvent:
    try:
        raw = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidArgumentError("Webhook body is not valid JSON") from exc
    try:
        return PlatformEvent.model_validate(raw)
    except ValidationError as exc:
        raise InvalidArgumentError("Webhook body does not match the event envelope") from exc


def _primary_playback_ids(event: PlatformEvent) -> tuple[str | None, str | None]:
    public_id = next((item.id for item in event.data.playback_ids if item.policy == "public"), None)
    signed_id = next((item.id for item in event.data.playback_ids if item.policy == "signed"), None)
    return public_id, signed_id


def _candidate_from_event(event: PlatformEvent, asset: MediaAsset) -> dict[str, Any]:
    data = event.data
    upload_status = data.upload_status or ("ready" if event.type == "asset.ready" else None)
    if upload_status and upload_status not in _UPLOAD_STATUSES:
        logger.warning("webhook_unknown_upload_status", extra={"event_id": event.id, "upload_status": upload_status})
        upload_status = None
    primary_public, primary_signed = _primary_playback_ids(event)
    candidate: dict[str, Any] = {
        "external_asset_id": data.asset_id,
        "external_upload_id": data.upload_id,
        "resource_type": data.resource_type,
        "format": data.format,
        "width": data.width,
        "height": data.height,
        "duration": data.duration,
        "aspect_ratio": data.aspect_ratio,
        "resolution_tier": data.resolution_tier,
        "ingest_type": data.ingest_type,
        "state": data.status,
        "upload_status": upload_status,
        "asset_created_at": data.created_at,
        "primary_public_playback_id": primary_public,
        "primary_signed_playback_id": primary_signed,
    }
    # Renames arrive as their own event; only fill a missing public id here.
    if not asset.public_id:
        candidate["public_id"] = data.public_id
    return candidate


class WebhookProcessor:
    """Verify, resolve and apply media platform events.

    Every handler derives its changes from the stored state, so redelivering an
    event with the same id leaves the same end state and issues no further
    owner notifications.
    """

    def __init__(
        self,
        service: AssetService,
        *,
        validity_seconds: int | None = None,
        future_skew_seconds: int | None = None,
    ) -> None:
        self.service = service
        self.validity_seconds = validity_seconds or settings.webhook_validity_seconds
        self.future_skew_seconds = future_skew_seconds or settings.webhook_future_skew_seconds
        self._handlers: dict[str, Callable[[AsyncSession, PlatformEvent], Awaitable[WebhookAck]]] = {
            "asset.created": self._apply_data_event,
            "asset.ready": self._apply_data_event,
            "asset.updated": self._apply_data_event,
            "asset.errored": self._apply_errored,
            "asset.renamed": self._apply_renamed,
            "asset.deleted": self._apply_deleted,
        }

    def verify(self, payload: bytes, *, signature: str | None, timestamp: str | None) -> None:
        if not signature:
            raise PermissionDeniedError("Missing webhook signature")
        valid = self.service.platform.verify_signature(
            payload,
            signature,
            timestamp or "",
            valid_for=self.validity_seconds,
            future_skew=self.future_skew_seconds,
        )
        if not valid:
            raise PermissionDeniedError("Invalid or expired webhook signature")

    async def handle(
        self,
        session: AsyncSession,
        payload: bytes,
        *,
        signature: str | None,
        timestamp: str | None,
    ) -> WebhookAck:
        self.verify(payload, signature=signature, timestamp=timestamp)
        event = parse_event(payload)
        logger.info("webhook_received", extra={"event_id": event.id, "event_type": event.type})
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("webhook_event_ignored", extra={"event_id": event.id, "event_type": event.type})
            return self._ack(event, "ignored")
        return await handler(session, event)

    @staticmethod
    def _ack(event: PlatformEvent, outcome: str, asset_ids: list[UUID] | None = None) -> WebhookAck:
        return WebhookAck(
            event_id=event.id,
            type=event.type,
            outcome=outcome,
            asset_ids=[str(asset_id) for asset_id in asset_ids or []],
        )

    async def _resolve(self, session: AsyncSession, event: PlatformEvent) -> MediaAsset | None:
        data = event.data
        asset = await asset_repository.find_by_reference(
            session,
            internal_id=data.external_id,
            upload_id=data.upload_id,
            external_asset_id=data.asset_id,
            public_id=data.public_id or data.from_public_id,
            for_update=True,
        )
        if asset is None:
            logger.warning(
                "webhook_asset_unresolved",
                extra={"event_id": event.id, "event_type": event.type, "public_id": data.public_id},
            )
        return asset

    async def _sync_documents(self, event: PlatformEvent, asset_id: UUID) -> bool:
        data = event.data
        if not data.tracks and not data.playback_ids:
            return False
        playback_ids = [item.model_dump() for item in data.playback_ids]
        changed = False

        def _sync(document: AssetMetadata) -> AssetMetadata | None:
            nonlocal changed
            tracks = data.tracks or document.tracks
            new_playback_ids = playback_ids or document.playback_ids
            if tracks == document.tracks and new_playback_ids == document.playback_ids:
                changed = False
                return None
            document.tracks = tracks
            document.playback_ids = new_playback_ids
            changed = True
            return document

        try:
            await self.service.metadata_store.update(metadata_key(asset_id), _sync)
        except NotFoundError:
            logger.warning("webhook_metadata_missing", extra={"event_id": event.id, "asset_id": asset_id})
            return False
        return changed

    async def _apply_data_event(self, session: AsyncSession, event: PlatformEvent) -> WebhookAck:
        asset = await self._resolve(session, event)
        if asset is None:
            return self._ack(event, "unresolved")

        patch = AssetPatch.from_changes(asset, _candidate_from_event(event, asset))
        changed = asset_repository.apply_patch(session, asset, patch)
        promoted = False
        if asset.status == AssetStatus.upload_url_generated and asset.upload_status == UploadStatus.ready.value:
            ensure_transition(asset, AssetStatus.active, system=True)
            asset.status = AssetStatus.active
            promoted = True
        await session.commit()

        documents_changed = await self._sync_documents(event, asset.id)
        applied = bool(changed) or promoted or documents_changed
        logger.info(
            "webhook_asset_patched" if applied else "webhook_asset_unchanged",
            extra={"event_id": event.id, "asset_id": asset.id, "fields": changed, "promoted": promoted},
        )
        return self._ack(event, "applied" if applied else "unchanged", [asset.id])

    async def _apply_errored(self, session: AsyncSession, event: PlatformEvent) -> WebhookAck:
        asset = await self._resolve(session, event)
        if asset is None:
            return self._ack(event, "unresolved")

        candidate = {
            "upload_status": UploadStatus.errored.value,
            "state": event.data.status or "errored",
            "platform_error": event.data.errors or {"messages": ["unspecified platform error"]},
        }
        changed = asset_repository.apply_patch(session, asset, AssetPatch.from_changes(asset, candidate))
        moved = False
        if asset.status not in (AssetStatus.broken, AssetStatus.archived):
            ensure_transition(asset, AssetStatus.broken, system=True)
            asset.status = AssetStatus.broken
            asset.marked_as_broken_by = None
            asset.marked_as_broken_by_name = SYSTEM_ACTOR
            asset.note = f"platform reported an error ({event.id})"[:512]
            moved = True
        await session.commit()
        logger.info(
            "webhook_asset_errored",
            extra={"event_id": event.id, "asset_id": asset.id, "fields": changed, "marked_broken": moved},
        )

        if asset.status == AssetStatus.broken:
            await self.service.release_owners(asset.id)
        return self._ack(event, "applied" if changed or moved else "unchanged", [asset.id])

    async def _apply_renamed(self, session: AsyncSession, event: PlatformEvent) -> WebhookAck:
        target = (event.data.to_public_id or "").strip()
        if not target:
            raise InvalidArgumentError("Rename event without to_public_id")
        asset = await self._resolve(session, event)
        if asset is None:
            return self._ack(event, "unresolved")
        if asset.public_id == target:
            await session.commit()
            return self._ack(event, "unchanged", [asset.id])
        previous = asset.public_id
        asset.public_id = target
        await session.commit()
        logger.info(
            "webhook_asset_renamed",
            extra={"event_id": event.id, "asset_id": asset.id, "from_public_id": previous, "to_public_id": target},
        )
        return self._ack(event, "applied", [asset.id])

    async def _apply_deleted(self, session: AsyncSession, event: PlatformEvent) -> WebhookAck:
        data = event.data
        resources = data.resources or [
            DeletedResource(asset_id=data.asset_id, public_id=data.public_id, external_id=data.external_id)
        ]

        targets: dict[UUID, MediaAsset] = {}
        redrive_purge: list[UUID] = []
        for resource in resources:
            asset = await asset_repository.find_by_reference(
                session,
                internal_id=resource.external_id,
                external_asset_id=resource.asset_id,
                public_id=resource.public_id,
            )
            if asset is None:
                logger.warning(
                    "webhook_asset_unresolved",
                    extra={"event_id": event.id, "event_type": event.type, "public_id": resource.public_id},
                )
                continue
            if asset.status == AssetStatus.archived:
                if asset.archive_event_id == event.id:
                    redrive_purge.append(asset.id)
                logger.info("webhook_asset_already_archived", extra={"event_id": event.id, "asset_id": asset.id})
                continue
            targets[asset.id] = asset
        # No transaction stays open across owner service calls.
        await session.commit()

        # Owners are released before the rows are archived; a failed type keeps its asset
        # out of this round so the platform's retry picks it up again.
        failures: list[str] = []
        releasable: list[UUID] = []
        for asset_id in targets:
            metadata = await self.service.metadata_store.get(metadata_key(asset_id))
            if metadata is not None and metadata.owners:
                try:
                    await self.service.notify(asset_id, remove_all(metadata.owners))
                except ExternalServiceError as exc:
                    failures.extend(f"{asset_id} {failure}" for failure in exc.failures or [exc.detail])
                    continue
            releasable.append(asset_id)

        audit = AuditTrailOptions.system(DELETE_NOTE, event_id=event.id)
        audit.validate(require_actor=False)
        archived: list[UUID] = []
        for asset_id in releasable:
            asset = await asset_repository.get_asset(session, asset_id, for_update=True)
            if asset.status == AssetStatus.archived:
                continue
            ensure_transition(asset, AssetStatus.archived, system=True)
            mark_archived(asset, audit, reason=DELETE_REASON)
            asset.upload_status = UploadStatus.deleted.value
            archived.append(asset_id)
        await session.commit()

        for asset_id in [*archived, *redrive_purge]:
            await self.service.metadata_store.delete(metadata_key(asset_id))

        logger.info(
            "webhook_assets_deleted",
            extra={
                "event_id": event.id,
                "archived": archived,
                "purged": [*archived, *redrive_purge],
                "failed": len(failures),
            },
        )
        if failures:
            raise ExternalServiceError("Owner release failed for deleted assets", failures=failures)
        return self._ack(event, "applied" if archived else "unchanged", archived or redrive_purge)
