from typing import Optional
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from .models import Base
from .config import config

def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    return create_async_engine(database_url or config.database_url)

def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory; each concurrent read opens its own session."""
    return async_sessionmaker(bind=engine, expire_on_commit=False)

async def init_db(engine: AsyncEngine):
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def get_db(request: Request):
    """Dependency to get database session."""
    async with request.app.state.session_factory() as db:
        yield db
