"""
Test fixtures - seeded in-memory database, fixed clock + HTTP client
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from api import app, get_uow
from infrastructure import FixedClock, InMemoryDatabase, InMemoryUnitOfWork, seed_reference_data

from factories import ACTOR, NOW, SequentialIds


@pytest.fixture()
def clock():
    return FixedClock(NOW)


@pytest.fixture()
def db():
    """A fresh database holding only the catalog and contacts"""
    return seed_reference_data(InMemoryDatabase())


@pytest.fixture()
def uow(db, clock):
    return InMemoryUnitOfWork(db, clock=clock, ids=SequentialIds())


@pytest.fixture()
def actor():
    return ACTOR


@pytest_asyncio.fixture()
async def client(db, clock):
    """httpx AsyncClient bound to the FastAPI app over the test database"""
    ids = SequentialIds()
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db, clock=clock, ids=ids)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        ac.headers["X-Actor-Id"] = ACTOR.id
        ac.headers["X-Actor-Name"] = ACTOR.name
        ac.headers["X-Actor-Email"] = ACTOR.email
        yield ac

    app.dependency_overrides.clear()
