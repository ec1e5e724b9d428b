from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from media_service.core.errors import ExternalServiceError
from media_service.db.base import Base
from media_service.db.session import build_engine, build_session_factory
from media_service.services.assets import AssetService
from media_service.services.media_platform import MediaPlatformClient, RemoteAsset
from media_service.services.metadata_store import InMemoryMetadataStore

WEBHOOK_SECRET = "platform-test-secret"


class FakeOwnerClient:
    """Records every owner service call; types listed in ``fail_types`` raise.

    ``on_call`` sees each operation before it is recorded.
    """

    def __init__(self, owner_types: tuple[str, ...] = ("product", "collection")) -> None:
        self._types = set(owner_types)
        self.calls: list[tuple[str, UUID | tuple[UUID, ...], str | None, tuple[str, ...]]] = []
        self.fail_types: set[str] = set()
        self.fail_force_delete = False
        self.on_call: Callable[[str], None] | None = None

    @property
    def owner_types(self) -> list[str]:
        return sorted(self._types)

    def supports(self, owner_type: str) -> bool:
        return owner_type in self._types

    def _record(self, operation: str, asset_id, owner_type: str | None, owner_ids: tuple[str, ...]) -> None:
        if self.on_call is not None:
            self.on_call(operation)
        if owner_type in self.fail_types:
            raise ExternalServiceError(
                f"{owner_type} unavailable", failures=[f"{owner_type} {operation}"], owner_type=owner_type
            )
        self.calls.append((operation, asset_id, owner_type, owner_ids))

    def count(self, operation: str | None = None) -> int:
        return len([call for call in self.calls if operation is None or call[0] == operation])

    async def add(self, asset_id: UUID, owner_id: str, owner_type: str) -> None:
        self._record("add", asset_id, owner_type, (owner_id,))

    async def delete(self, asset_id: UUID, owner_id: str, owner_type: str) -> None:
        self._record("delete", asset_id, owner_type, (owner_id,))

    async def add_batch(self, asset_id: UUID, owner_ids, owner_type: str) -> int:
        self._record("add_batch", asset_id, owner_type, tuple(sorted(owner_ids)))
        return len(owner_ids)

    async def delete_batch(self, asset_id: UUID, owner_ids, owner_type: str) -> int:
        self._record("delete_batch", asset_id, owner_type, tuple(sorted(owner_ids)))
        return len(owner_ids)

    async def force_delete_batch(self, asset_ids) -> None:
        if self.fail_force_delete:
            raise ExternalServiceError("Owner force delete failed", failures=["product force_delete: timeout"])
        self._record("force_delete", tuple(asset_ids), None, ())


class FakePlatform(MediaPlatformClient):
    def __init__(self) -> None:
        super().__init__(
            base_url="https://platform.test/v1_1",
            cloud_name="demo",
            api_key="platform-key",
            api_secret=WEBHOOK_SECRET,
            upload_folder="media",
        )
        self.deleted: list[tuple[str, str | None]] = []
        self.remote: list[RemoteAsset] = []
        self.fail_delete = False

    async def delete_remote_asset(self, public_id: str, resource_type: str | None = None) -> None:
        if self.fail_delete:
            raise ExternalServiceError("Media platform delete failed", failures=[f"delete {public_id}: timeout"])
        self.deleted.append((public_id, resource_type))

    async def list_assets_in_folder(self, folder: str | None = None) -> list[RemoteAsset]:
        return list(self.remote)


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def owner_client() -> FakeOwnerClient:
    return FakeOwnerClient()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore(cas_retries=3)


@pytest.fixture
def asset_service(
    metadata_store: InMemoryMetadataStore, owner_client: FakeOwnerClient, platform: FakePlatform
) -> AssetService:
    return AssetService(
        metadata_store=metadata_store,
        owner_client=owner_client,  # type: ignore[arg-type]
        platform=platform,
        default_page_size=20,
        max_page_size=100,
        notify_concurrency=2,
    )


@pytest.fixture
async def session_factory(anyio_backend: str) -> AsyncIterator[async_sessionmaker]:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def signed_headers(platform: FakePlatform) -> Callable[[bytes], dict[str, str]]:
    def _headers(payload: bytes, *, timestamp: datetime | None = None) -> dict[str, str]:
        issued_at = (timestamp or datetime.now(timezone.utc)).isoformat()
        return {"X-Platform-Timestamp": issued_at, "X-Platform-Signature": platform.sign_payload(payload, issued_at)}

    return _headers

