from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlmodel import SQLModel
from pitstop.config import settings
from typing import Annotated, Optional
from fastapi import Depends

def make_engine(url: str = settings.DATABASE_URL) -> AsyncEngine:
    return create_async_engine(url, echo=settings.DATABASE_ECHO, future=True)

def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Stores and the router read rows after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)

engine = make_engine()
AsyncSessionLocal = make_session_factory(engine)

# Request-scoped session for the HTTP routers
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session

SessionDep = Annotated[AsyncSession, Depends(get_db)]

async def create_db_and_tables(bind: Optional[AsyncEngine] = None):
    # Table models register on the metadata at import
    from pitstop.models import beacon, notification, presence, user, vehicle  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
