import asyncio

import pytest

from web_replay.config import Settings
from web_replay.store import CacheStore


class FakeResponse:
    """Stands in for a Playwright network response."""

    def __init__(
        self, url, body=b"x", status=200, content_type="text/css", delay=0.0, error=None
    ):
        self.url = url
        self.status = status
        self.headers = {"content-type": content_type}
        self._body = body
        self._delay = delay
        self._error = error

    async def body(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return self._body


@pytest.fixture
def settings(tmp_path):
    return Settings(
        cache_root=str(tmp_path / "cache"),
        secret_key="test-secret",
        early_snapshot_delay_ms=10,
        early_snapshot_min_chars=20,
        dom_ready_timeout_ms=50,
        network_idle_timeout_ms=50,
        settle_delay_ms=0,
        body_read_timeout=1.0,
        emergency_min_chars=50,
        fallback_workers=2,
    )


@pytest.fixture
def store(settings):
    return CacheStore(settings.cache_path, settings.serve_prefix)
