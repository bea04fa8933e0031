"""
ImgBed Backend — Database Session Management
==============================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency
       for the image ledger.
How:   create_app() builds one engine and session factory from its settings
       and keeps them on `app.state`; the session dependency reads them from
       there, commits on success and rolls back on error.
Who:   Used by route handlers via FastAPI's dependency injection system.
When:  Engine is created with the app; sessions are created per-request.

Connection Pooling:
    pool_size / max_overflow / pool_pre_ping come from settings and apply to
    server databases (PostgreSQL via asyncpg). SQLite (aiosqlite, used by the
    test suite) keeps SQLAlchemy's default pool for that dialect.
"""

from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from imgbed.config import Settings, settings as default_settings


# ── Engine Configuration ──────────────────────────────────────────────────
def build_engine(config: Optional[Settings] = None) -> AsyncEngine:
    """Create an async engine for `config.database_url` with dialect-suited pooling."""
    config = config or default_settings
    options: Dict[str, Any] = {
        # Echo SQL only in DEBUG
        "echo": config.log_level == "DEBUG",
    }
    if not config.database_url.startswith("sqlite"):
        options.update(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_pre_ping=config.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(config.database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # expire_on_commit=False: records stay readable after the request commits
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object with Alembic for migrations.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the app's factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back the transaction
        5. Always: closes the session (returns connection to pool)

    Example usage in a route:
        @router.get("/api/images/{image_id}")
        async def get_image(image_id: str, db: AsyncSession = Depends(get_db_session)):
            return await ledger.get(db, image_id)
    """
    session_factory: async_sessionmaker = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_tables(bind: AsyncEngine) -> None:
    """
    Create ledger tables that do not exist yet.

    Deployments run Alembic; this is for SQLite development databases and
    the test suite.
    """
    # Registers ImageRecord on Base.metadata
    from imgbed.models import image  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(engine: AsyncEngine) -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    await engine.dispose()
