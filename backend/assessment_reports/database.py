"""
Database connection and session management.

Key concepts:
- SQLAlchemy 2.0's async API (asyncpg in production, aiosqlite in tests)
- AsyncSession gives us non-blocking database calls for both the API and
  the PDF worker, which share the same models and session factory
- get_db() is a FastAPI dependency that provides a session per request
"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import NullPool

from assessment_reports.config import settings


def _engine_options() -> dict:
    # SQLite connections are file handles bound to one event loop; don't pool them
    if settings.is_sqlite:
        return {"poolclass": NullPool}
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(),
)

# expire_on_commit=False keeps loaded objects usable after commit
# (an expired attribute would trigger a lazy load, which fails under async)
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def dialect_insert(session: AsyncSession, model):
    """INSERT construct with ON CONFLICT support for the session's backend.

    PostgreSQL in production, SQLite in the test suite. Both expose
    on_conflict_do_update / on_conflict_do_nothing with the same arguments.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


async def get_db():
    """FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create all tables defined by our models.

    Called once at API startup. Production deployments manage the schema
    with migrations; create_all only fills in missing tables.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
