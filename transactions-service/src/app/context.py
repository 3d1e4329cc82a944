from dataclasses import dataclass
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker
from app.config import Settings
from app.db import build_engine, build_session_factory

@dataclass
class ServiceContext:
    """Process-wide handles, built once at startup and passed down explicitly."""
    settings: Settings
    engine: AsyncEngine
    session_factory: sessionmaker

    async def dispose(self) -> None:
        await self.engine.dispose()

def build_context(settings: Settings) -> ServiceContext:
    engine = build_engine(settings)
    return ServiceContext(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
    )
