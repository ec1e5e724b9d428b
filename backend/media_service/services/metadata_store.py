from __future__ import annotations

import abc
import logging
from collections.abc import Callable, Sequence

from redis.asyncio import Redis
from redis.exceptions import WatchError

from media_service.core.config import settings
from media_service.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from media_service.core.redis_client import get_redis, json_dumps, json_loads
from media_service.schemas.metadata import AssetMetadata

logger = logging.getLogger(__name__)

Mutation = Callable[[AssetMetadata], AssetMetadata | None]


class MetadataStore(abc.ABC):
    """Document store for per-asset metadata keyed by asset id.

    Writes through :meth:`update` are compare-and-set on ``version``: the
    mutation runs against a fresh copy and is retried when another writer got
    there first.
    """

    def __init__(self, *, cas_retries: int = 5) -> None:
        self.cas_retries = cas_retries

    @abc.abstractmethod
    async def get(self, key: str) -> AssetMetadata | None:
        ...

    @abc.abstractmethod
    async def get_many(self, keys: Sequence[str]) -> dict[str, AssetMetadata]:
        ...

    @abc.abstractmethod
    async def create(self, document: AssetMetadata) -> AssetMetadata:
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abc.abstractmethod
    async def keys(self) -> list[str]:
        ...

    @abc.abstractmethod
    async def _compare_and_set(self, key: str, expected_version: int, document: AssetMetadata) -> bool:
        ...

    async def update(self, key: str, mutate: Mutation) -> AssetMetadata:
        """Apply ``mutate`` atomically. Returning ``None`` from ``mutate`` means no change."""
        for attempt in range(self.cas_retries + 1):
            current = await self.get(key)
            if current is None:
                raise NotFoundError("Asset metadata not found", key=key)
            candidate = mutate(current.model_copy(deep=True))
            if candidate is None:
                return current
            candidate.version = current.version + 1
            if await self._compare_and_set(key, current.version, candidate):
                return candidate
            logger.info("metadata_cas_retry", extra={"key": key, "attempt": attempt + 1})
        raise ConflictError("Asset metadata was modified concurrently", key=key)


class InMemoryMetadataStore(MetadataStore):
    """Process-local store used when REDIS_URL is not configured.

    Every method body runs without awaiting, so each operation is atomic on
    the event loop.
    """

    def __init__(self, *, cas_retries: int = 5) -> None:
        super().__init__(cas_retries=cas_retries)
        self._documents: dict[str, str] = {}

    async def get(self, key: str) -> AssetMetadata | None:
        raw = self._documents.get(key)
        return AssetMetadata.model_validate_json(raw) if raw is not None else None

    async def get_many(self, keys: Sequence[str]) -> dict[str, AssetMetadata]:
        found: dict[str, AssetMetadata] = {}
        for key in keys:
            raw = self._documents.get(key)
            if raw is not None:
                found[key] = AssetMetadata.model_validate_json(raw)
        return found

    async def create(self, document: AssetMetadata) -> AssetMetadata:
        if document.key in self._documents:
            raise AlreadyExistsError("Asset metadata already exists", key=document.key)
        self._documents[document.key] = document.model_dump_json()
        return document

    async def delete(self, key: str) -> bool:
        return self._documents.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return sorted(self._documents)

    async def _compare_and_set(self, key: str, expected_version: int, document: AssetMetadata) -> bool:
        raw = self._documents.get(key)
        if raw is None:
            return False
        if AssetMetadata.model_validate_json(raw).version != expected_version:
            return False
        self._documents[key] = document.model_dump_json()
        return True


class RedisMetadataStore(MetadataStore):
    def __init__(self, client: Redis, *, prefix: str, cas_retries: int = 5) -> None:
        super().__init__(cas_retries=cas_retries)
        self._client = client
        self._prefix = prefix.rstrip(":")

    def _redis_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    @staticmethod
    def _load(raw: str | None) -> AssetMetadata | None:
        if raw is None:
            return None
        return AssetMetadata.model_validate(json_loads(raw))

    async def get(self, key: str) -> AssetMetadata | None:
        return self._load(await self._client.get(self._redis_key(key)))

    async def get_many(self, keys: Sequence[str]) -> dict[str, AssetMetadata]:
        if not keys:
            return {}
        values = await self._client.mget([self._redis_key(key) for key in keys])
        found: dict[str, AssetMetadata] = {}
        for key, raw in zip(keys, values):
            document = self._load(raw)
            if document is not None:
                found[key] = document
        return found

    async def create(self, document: AssetMetadata) -> AssetMetadata:
        created = await self._client.set(
            self._redis_key(document.key), json_dumps(document.model_dump(mode="json")), nx=True
        )
        if not created:
            raise AlreadyExistsError("Asset metadata already exists", key=document.key)
        return document

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._redis_key(key)))

    async def keys(self) -> list[str]:
        offset = len(self._prefix) + 1
        found = [raw[offset:] async for raw in self._client.scan_iter(match=f"{self._prefix}:*")]
        return sorted(found)

    async def _compare_and_set(self, key: str, expected_version: int, document: AssetMetadata) -> bool:
        redis_key = self._redis_key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(redis_key)
                current = self._load(await pipe.get(redis_key))
                if current is None or current.version != expected_version:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(redis_key, json_dumps(document.model_dump(mode="json")))
                await pipe.execute()
            except WatchError:
                return False
        return True


_memory_store: InMemoryMetadataStore | None = None


def get_metadata_store() -> MetadataStore:
    """Redis-backed store when REDIS_URL is configured, otherwise the process-local one."""
    global _memory_store
    client = get_redis()
    if client is not None:
        return RedisMetadataStore(client, prefix=settings.metadata_key_prefix, cas_retries=settings.metadata_cas_retries)
    if _memory_store is None:
        logger.warning("metadata_store_in_memory")
        _memory_store = InMemoryMetadataStore(cas_retries=settings.metadata_cas_retries)
    return _memory_store
