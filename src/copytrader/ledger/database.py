"""Database connection and session management."""

from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from copytrader.config import Settings, get_settings
from copytrader.ledger.models import Base

# Global engine and session factory
_engine = None
_session_factory = None


def normalize_url(db_url: str) -> str:
    """Convert sqlite:/// to sqlite+aiosqlite:/// if needed."""
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return db_url


def create_engine(settings: Settings) -> AsyncEngine:
    """Create an async engine for the configured ledger database."""
    db_url = normalize_url(settings.database_url)

    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(
        db_url,
        echo=settings.debug and not settings.is_production,
        future=True,
    )


def get_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_engine(settings or get_settings())
    return _engine


def get_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=engine or get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize the database by creating all tables."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
