"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from main import create_app


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upload_dir(tmp_path):
    """Upload root with a few files, plus a secret file just outside it."""
    root = tmp_path / "uploads"
    (root / "docs").mkdir(parents=True)
    (root / "hello.txt").write_text("hello uploads")
    (root / "docs" / "page.html").write_text("<h1>page</h1>")
    (root / "data.json").write_text('{"value": 1}')
    (root / ".env").write_text("SECRET=1")
    (tmp_path / "secret.txt").write_text("top secret")
    return root


@pytest.fixture
def make_settings(upload_dir):
    """Build settings isolated from the process environment and .env files."""

    def _make(**overrides) -> Settings:
        values = {"UPLOAD_DIR": str(upload_dir), "LOG_FORMAT": "text"}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def app(settings, clock):
    return create_app(settings, clock=clock)


@pytest_asyncio.fixture
async def client(app):
    """Create test client bound to the app under test."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
