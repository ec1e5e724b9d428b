import argparse
import asyncio
import json
import sys
from uuid import UUID

from media_service.core.config import settings
from media_service.core.errors import ServiceError
from media_service.core.logging_config import configure_logging
from media_service.core.redis_client import close_redis
from media_service.db.session import SessionLocal
from media_service.services.assets import AssetService
from media_service.services.media_platform import get_media_platform_client
from media_service.services.metadata_store import get_metadata_store
from media_service.services.owner_service import get_owner_service_client


def _build_service() -> AssetService:
    return AssetService(
        metadata_store=get_metadata_store(),
        owner_client=get_owner_service_client(),
        platform=get_media_platform_client(),
    )


def _parse_asset_ids(raw_ids: list[str]) -> list[UUID]:
    parsed: list[UUID] = []
    for raw in raw_ids:
        try:
            parsed.append(UUID(raw))
        except ValueError:
            raise SystemExit(f"Invalid asset id: {raw}")
    return parsed


async def resync_owners(asset_ids: list[UUID]) -> dict[str, object]:
    service = _build_service()
    results: dict[str, object] = {}
    try:
        async with SessionLocal() as session:
            for asset_id in asset_ids:
                try:
                    results[str(asset_id)] = await service.resync_owners(session, asset_id)
                except ServiceError as exc:
                    results[str(asset_id)] = {"error": exc.code, "detail": str(exc)}
    finally:
        await close_redis()
    return results


async def purge_metadata(*, dry_run: bool) -> list[str]:
    service = _build_service()
    try:
        async with SessionLocal() as session:
            return await service.purge_orphan_metadata(session, dry_run=dry_run)
    finally:
        await close_redis()


def _add_owner_commands(subparsers: argparse._SubParsersAction) -> None:
    resync = subparsers.add_parser("resync-owners", help="Re-issue owner service calls from stored metadata")
    resync.add_argument("asset_ids", nargs="+", help="Asset ids to resync")


def _add_metadata_commands(subparsers: argparse._SubParsersAction) -> None:
    purge = subparsers.add_parser("purge-metadata", help="Delete metadata documents without a canonical asset")
    purge.add_argument("--dry-run", action="store_true", help="Only list the orphaned documents")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Media asset maintenance utilities")
    subparsers = parser.add_subparsers(dest="command")
    _add_owner_commands(subparsers)
    _add_metadata_commands(subparsers)
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "resync-owners":
        results = asyncio.run(resync_owners(_parse_asset_ids(args.asset_ids)))
        print(json.dumps(results, indent=2, sort_keys=True))
        if any(isinstance(value, dict) and "error" in value for value in results.values()):
            sys.exit(1)
        return True

    if args.command == "purge-metadata":
        orphans = asyncio.run(purge_metadata(dry_run=bool(args.dry_run)))
        print(json.dumps({"dry_run": bool(args.dry_run), "orphans": orphans}, indent=2))
        return True

    return False


def main():
    configure_logging(settings.log_json)
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
