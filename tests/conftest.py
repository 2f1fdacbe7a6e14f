import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.database import create_tables, seed_demo_companies
from backend.main import app
from backend.services.record_store import RecordStoreGateway


# Store seeded with the demo companies, one fresh SQLite file per test
@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'companies.db'}", echo=False)
    await create_tables(engine)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    await seed_demo_companies(factory)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def gateway(session_factory):
    return RecordStoreGateway(session_factory)


# Client
@pytest_asyncio.fixture(scope="function")
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
