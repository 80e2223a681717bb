from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def create_sessionmaker(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the engine + sessionmaker pair stored on app.state."""
    engine = create_async_engine(database_url, echo=False)
    return engine, async_sessionmaker(engine, expire_on_commit=False)
