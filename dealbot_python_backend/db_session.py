"""
SQLAlchemy async session setup for the Deal Bot analytics backend.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from dealbot_python_backend.config import DATABASE_URL as _RAW_DATABASE_URL

DATABASE_URL = _RAW_DATABASE_URL

# Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy async
if DATABASE_URL and DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

# Create async engine
async_engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL query logging
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def get_async_session_context():
    """
    Session factory for ingestion runs and background tasks.

    Each ingestion batch checks out its own session and commits or rolls
    back explicitly, so no request-scoped dependency is used here.

    Usage:
        session = get_async_session_context()
        try:
            ...
            await session.commit()
        finally:
            await session.close()
    """
    return AsyncSessionLocal()
