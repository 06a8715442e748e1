from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncAttrs,
)
from sqlalchemy.orm import DeclarativeBase

from careauth.core.config import database_logger, settings

ASYNC_SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    options: dict = {"echo": settings.DEBUG, "pool_pre_ping": True}
    # SQLite pools don't take sizing arguments
    if not url.startswith("sqlite"):
        options.update(
            pool_size=20,
            max_overflow=30,
            pool_recycle=3600,  # Recycle connections every hour
        )
    return options


async_engine: AsyncEngine = create_async_engine(
    ASYNC_SQLALCHEMY_DATABASE_URL,
    **_engine_options(ASYNC_SQLALCHEMY_DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    autoflush=False,
    expire_on_commit=False,
    autobegin=True,
)


# Base class for declarative_base
class Base(AsyncAttrs, DeclarativeBase):
    pass


async def init_db() -> None:
    """
    Initializes the database by creating all the tables defined in the metadata.

    Returns:
        None
    """
    # Register every model on the metadata before create_all
    import careauth.core.db.models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    database_logger.info("Database tables created")


async def dispose_db() -> None:
    """
    Dispose the database connection pool.

    Returns:
        None
    """
    await async_engine.dispose()
    database_logger.info("Database connection pool disposed")
