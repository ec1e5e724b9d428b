import argparse
import asyncio

from media_service.db.session import SessionLocal
from media_service.services.media_platform import get_media_platform_client
from media_service.services.orphans import delete_orphan_remote_assets, find_orphan_remote_assets


async def main(delete: bool, folder: str | None) -> None:
    platform = get_media_platform_client()
    async with SessionLocal() as session:
        report = await find_orphan_remote_assets(session, platform, folder=folder)
    if not report.orphans:
        print(f"No orphaned remote assets found in {report.folder!r} ({report.remote_total} scanned).")
        return
    print(f"Found {len(report.orphans)} orphaned remote assets in {report.folder!r}:")
    for item in sorted(report.orphans, key=lambda asset: asset.public_id):
        print(f" - {item.resource_type}/{item.public_id}")
    if delete:
        await delete_orphan_remote_assets(platform, report)
        print(f"Deleted {len(report.deleted)} orphaned remote assets.")
        for failure in report.failures:
            print(f" ! {failure}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Scan the media platform upload folder for assets without a record.")
    parser.add_argument("--delete", action="store_true", help="Delete orphaned remote assets after listing")
    parser.add_argument("--folder", default=None, help="Folder to scan (defaults to PLATFORM_UPLOAD_FOLDER)")
    args = parser.parse_args()
    asyncio.run(main(args.delete, args.folder))
