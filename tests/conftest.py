import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pitstop.database import create_db_and_tables, get_db, make_engine, make_session_factory
from pitstop.main import app
from pitstop.models.user import UserProfile
from pitstop.services import build_services

from tests.fakes import FakeTransport


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'pitstop-test.db'}")
    await create_db_and_tables(engine)
    try:
        yield make_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest_asyncio.fixture
async def services(session_factory, transport):
    container = build_services(session_factory, transport=transport)
    try:
        yield container
    finally:
        await container.close()


@pytest_asyncio.fixture
async def add_user(session_factory):
    async def _add(user_id: str, **fields) -> UserProfile:
        fields.setdefault("display_name", user_id.title())
        async with session_factory() as db:
            user = UserProfile(id=user_id, **fields)
            db.add(user)
            await db.commit()
            await db.refresh(user)
            return user

    return _add


@pytest_asyncio.fixture
async def api_client(session_factory, services):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.state.services = services
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
