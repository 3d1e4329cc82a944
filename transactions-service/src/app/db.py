from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from app.config import Settings

Base = declarative_base()

def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        echo=settings.DB_ECHO,
        future=True
    )

def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def session_scope(session_factory: sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async_session = session_factory()
    try:
        yield async_session
    finally:
        await async_session.close()
