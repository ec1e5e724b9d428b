from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

import anyio
import httpx

from media_service.core.config import settings
from media_service.core.errors import (
    ConflictError,
    ExternalServiceError,
    InvalidArgumentError,
    NotFoundError,
    ServiceError,
)
from media_service.services.owner_diff import OwnerDiff

logger = logging.getLogger(__name__)


def _error_from_response(resp: httpx.Response, *, owner_type: str, operation: str) -> ServiceError:
    detail = f"Owner service {owner_type!r} rejected {operation} ({resp.status_code})"
    if resp.status_code in (400, 422):
        return InvalidArgumentError(detail, owner_type=owner_type)
    if resp.status_code == 404:
        return NotFoundError(detail, owner_type=owner_type)
    if resp.status_code == 409:
        return ConflictError(detail, owner_type=owner_type)
    return ExternalServiceError(detail, failures=[detail], owner_type=owner_type)


class OwnerServiceClient:
    """HTTP client for the services that own assets, one base URL per owner type."""

    def __init__(
        self,
        base_urls: Mapping[str, str],
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_urls = {owner_type: url.rstrip("/") for owner_type, url in base_urls.items()}
        self._timeout = timeout
        self._transport = transport

    @property
    def owner_types(self) -> list[str]:
        return sorted(self._base_urls)

    def supports(self, owner_type: str) -> bool:
        return owner_type in self._base_urls

    def _base_url(self, owner_type: str) -> str:
        base_url = self._base_urls.get(owner_type)
        if not base_url:
            raise InvalidArgumentError(f"Unknown owner type {owner_type!r}", owner_type=owner_type)
        return base_url

    async def _post(self, owner_type: str, path: str, body: dict[str, Any], *, operation: str) -> dict[str, Any]:
        base_url = self._base_url(owner_type)
        try:
            async with httpx.AsyncClient(base_url=base_url, timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(path, json=body, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                f"Owner service {owner_type!r} unreachable during {operation}",
                failures=[f"{owner_type} {operation}: {exc.__class__.__name__}"],
                owner_type=owner_type,
            ) from exc
        if resp.status_code >= 400:
            raise _error_from_response(resp, owner_type=owner_type, operation=operation)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def add(self, asset_id: UUID, owner_id: str, owner_type: str) -> None:
        await self._post(
            owner_type,
            "/internal/media-owners/add",
            {"asset_id": str(asset_id), "owner_id": owner_id},
            operation="add",
        )

    async def delete(self, asset_id: UUID, owner_id: str, owner_type: str) -> None:
        await self._post(
            owner_type,
            "/internal/media-owners/delete",
            {"asset_id": str(asset_id), "owner_id": owner_id},
            operation="delete",
        )

    async def add_batch(self, asset_id: UUID, owner_ids: Iterable[str], owner_type: str) -> int:
        data = await self._post(
            owner_type,
            "/internal/media-owners/batch-add",
            {"asset_id": str(asset_id), "owner_ids": sorted(owner_ids)},
            operation="batch_add",
        )
        return int(data.get("affected", 0) or 0)

    async def delete_batch(self, asset_id: UUID, owner_ids: Iterable[str], owner_type: str) -> int:
        data = await self._post(
            owner_type,
            "/internal/media-owners/batch-delete",
            {"asset_id": str(asset_id), "owner_ids": sorted(owner_ids)},
            operation="batch_delete",
        )
        return int(data.get("affected", 0) or 0)

    async def force_delete_batch(self, asset_ids: Iterable[UUID]) -> None:
        """Drop every association of ``asset_ids`` in all configured owner services."""
        body = {"asset_ids": sorted(str(asset_id) for asset_id in asset_ids)}
        if not body["asset_ids"]:
            return
        failures: list[str] = []
        for owner_type in self.owner_types:
            try:
                await self._post(owner_type, "/internal/media-owners/force-delete", body, operation="force_delete")
            except ServiceError as exc:
                failures.append(f"{owner_type} force_delete: {exc.detail}")
        if failures:
            raise ExternalServiceError("Owner force delete failed", failures=failures)


async def notify_owner_changes(
    client: Any,
    asset_id: UUID,
    diff: OwnerDiff,
    *,
    concurrency: int | None = None,
) -> dict[str, dict[str, int]]:
    """Send one batch call per owner type and direction.

    Owner types run in parallel up to ``concurrency``; calls for the same type
    run one after another (deletions first). Failures are collected across
    all types and raised together once every type has been attempted.
    """
    if diff.is_empty():
        return {}
    limiter = anyio.CapacityLimiter(max(1, concurrency or settings.owner_notify_concurrency))
    results: dict[str, dict[str, int]] = {}
    failures: list[str] = []
    failed_types: set[str] = set()

    async def _notify_type(owner_type: str) -> None:
        async with limiter:
            counts: dict[str, int] = {}
            for direction, owner_ids, call in (
                ("delete", diff.to_delete.get(owner_type), client.delete_batch),
                ("add", diff.to_add.get(owner_type), client.add_batch),
            ):
                if not owner_ids:
                    continue
                try:
                    affected = await call(asset_id, owner_ids, owner_type)
                except ServiceError as exc:
                    failures.append(f"{owner_type} {direction}: {exc.detail}")
                    failed_types.add(owner_type)
                    logger.error(
                        "owner_notify_failed",
                        extra={
                            "asset_id": asset_id,
                            "owner_type": owner_type,
                            "direction": direction,
                            "error": str(exc),
                        },
                    )
                    continue
                counts[direction] = affected
                if affected != len(owner_ids):
                    logger.warning(
                        "owner_notify_count_mismatch",
                        extra={
                            "asset_id": asset_id,
                            "owner_type": owner_type,
                            "direction": direction,
                            "expected": len(owner_ids),
                            "affected": affected,
                        },
                    )
            results[owner_type] = counts

    async with anyio.create_task_group() as tg:
        for owner_type in diff.owner_types():
            tg.start_soon(_notify_type, owner_type)

    if failures:
        raise ExternalServiceError(
            "Owner service notification failed",
            failures=sorted(failures),
            failed_types=sorted(failed_types),
        )
    return results


def get_owner_service_client() -> OwnerServiceClient:
    return OwnerServiceClient(settings.owner_service_urls, timeout=settings.owner_service_timeout_seconds)
