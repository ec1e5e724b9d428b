"""Reconcile the media platform's upload folder against the canonical store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from media_service.core.errors import ExternalServiceError
from media_service.services import asset_repository
from media_service.services.media_platform import MediaPlatformClient, RemoteAsset

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrphanReport:
    folder: str
    remote_total: int = 0
    orphans: list[RemoteAsset] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


async def find_orphan_remote_assets(
    session: AsyncSession,
    platform: MediaPlatformClient,
    *,
    folder: str | None = None,
) -> OrphanReport:
    remote = await platform.list_assets_in_folder(folder)
    known = await asset_repository.known_public_ids(session, [item.public_id for item in remote])
    report = OrphanReport(folder=folder if folder is not None else platform.upload_folder, remote_total=len(remote))
    report.orphans = [item for item in remote if item.public_id not in known]
    logger.info(
        "orphan_remote_assets_found",
        extra={"folder": report.folder, "remote_total": report.remote_total, "orphans": len(report.orphans)},
    )
    return report


async def delete_orphan_remote_assets(platform: MediaPlatformClient, report: OrphanReport) -> OrphanReport:
    for item in report.orphans:
        try:
            await platform.delete_remote_asset(item.public_id, item.resource_type)
        except ExternalServiceError as exc:
            report.failures.append(f"{item.public_id}: {exc}")
            logger.error("orphan_remote_delete_failed", extra={"public_id": item.public_id, "error": str(exc)})
            continue
        report.deleted.append(item.public_id)
    return report
