import httpx
import pytest
import pytest_asyncio

from giftcodes.config import Settings
from giftcodes.crypto import Keyring, generate_key
from giftcodes.db import init_db, make_engine, make_session_factory
from giftcodes.inventory import InventoryService
from giftcodes.main import create_app
from giftcodes.security import mint_admin_token
from giftcodes.store import InventoryStore
from tests.helpers import ADMIN_SECRET, FINGERPRINT_SECRET, FakeRedis


@pytest.fixture
def keyring():
    return Keyring({"k1": generate_key()})


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'inventory.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return InventoryStore(session_factory)


@pytest.fixture
def inventory(store, keyring):
    return InventoryService(store, keyring, FINGERPRINT_SECRET)


@pytest.fixture
def settings(tmp_path, keyring):
    return Settings(
        keyring=keyring,
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        fingerprint_secret=FINGERPRINT_SECRET,
        admin_token_secret=ADMIN_SECRET,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def app(settings, fake_redis):
    return create_app(settings, redis=fake_redis)


@pytest_asyncio.fixture(scope="function")
async def client(app):
    token = mint_admin_token("tests", ADMIN_SECRET)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
        headers={"Authorization": f"Bearer {token}"},
        timeout=10.0,
    ) as c:
        yield c


@pytest_asyncio.fixture(scope="function")
async def anon_client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver", timeout=10.0
    ) as c:
        yield c
