from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from media_service.core.config import settings


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine; sqlite gets thread-agnostic connections, servers get pre-ping."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, future=True, echo=echo, connect_args={"check_same_thread": False})
    return create_async_engine(database_url, future=True, echo=echo, pool_pre_ping=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows stay readable after commit; the asset service returns them to the API layer.
    return async_sessionmaker(bind, expire_on_commit=False, autoflush=False, class_=AsyncSession)


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency to provide a database session."""
    async with SessionLocal() as session:
        yield session
