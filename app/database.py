from typing import Any, AsyncIterator, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url, pool_pre_ping=True, future=True)

# Attributes must stay readable after commit: lazy refresh is not available
# outside the greenlet that owns the connection.
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


ModelT = TypeVar("ModelT", bound=Any)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


async def get_for_update(db: AsyncSession, model: type[ModelT], ident: str) -> ModelT | None:
    """
    SELECT ... FOR UPDATE on one row, refreshing any copy already in the
    session so the caller decides on current state.
    """
    result = await db.execute(
        select(model)
        .where(model.id == ident)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_schema() -> None:
    """Create all tables (development convenience; production uses migrations)."""
    import app.models  # noqa: F401  register mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
