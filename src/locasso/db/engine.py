"""Database engine for the identity store.

Sign-in requests share one connection pool; every request gets its own
AsyncSession and therefore its own transaction. Uniqueness of
(external_id, provider) is enforced by the database, not by this pool.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from locasso.config import settings

# Sign-in bursts (app launch, token refresh) are short; overflow absorbs them.
# pre_ping drops connections the database closed while idle.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=15,
    pool_pre_ping=True,
)

# Results are read after commit to build the sign-in response
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """Per-request session; uncommitted work is rolled back on close."""
    async with async_session_factory() as session:
        yield session
