from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from scrape_worker.config import get_settings

settings = get_settings()


def to_async_url(url: str) -> str:
    """Convert sqlite:/// to sqlite+aiosqlite:///"""
    return url.replace("sqlite:///", "sqlite+aiosqlite:///")


def ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if not url.startswith("sqlite") or ":memory:" in url or ":///" not in url:
        return
    Path(url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)


def create_engine_for(url: str) -> AsyncEngine:
    ensure_sqlite_directory(url)
    return create_async_engine(to_async_url(url), echo=False)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = create_engine_for(settings.database_url)
async_session = create_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        yield session


async def init_db(target: AsyncEngine = engine):
    # Register models on Base.metadata before create_all
    from scrape_worker import models  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
