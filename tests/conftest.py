import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from imagegen.core import config
from imagegen.core.session import PSID, PSIDTS, CookieStore

from .helpers import FakeGemini, endpoints_for


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings and data at a temp dir so tests never touch the repo."""
    monkeypatch.setenv("IMAGEGEN_SETTINGS", str(tmp_path / "settings.json"))
    monkeypatch.setenv("IMAGEGEN_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("IMAGEGEN_ENV_FILE", str(tmp_path / ".env"))
    monkeypatch.delenv("IMAGEGEN_DEBUG", raising=False)
    config.reload()
    yield
    monkeypatch.undo()
    config.reload()


@pytest.fixture
def store() -> CookieStore:
    return CookieStore({PSID: "psid-abc", PSIDTS: "psidts-def", "NID": "nid-1"})


@pytest.fixture
def fake() -> FakeGemini:
    return FakeGemini()


@pytest_asyncio.fixture
async def upstream(fake):
    server = TestServer(fake.app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def endpoints(upstream):
    return endpoints_for(upstream)


@pytest_asyncio.fixture
async def http():
    async with aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar()) as session:
        yield session
