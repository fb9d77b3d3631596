"""Shared fixtures: an in-memory URL shortener and a manual-clock driver."""

import asyncio
import json
import os

import pytest

from vuflow.transport import Response

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "..", "fixtures")


class FakeShortener:
    """In-memory stand-in for the shortener service."""

    def __init__(self, base_url: str = "", timeout: float = None):
        self.urls = {}
        self.posts = 0
        self.gets = 0
        self.closed = False

    async def post(self, url, body=None, headers=None):
        self.posts += 1
        payload = json.loads(body)
        code = f"c{len(self.urls)}"
        self.urls[code] = payload["long_url"]
        return Response(status=200, body=json.dumps({"short_code": code}))

    async def get(self, url, headers=None):
        self.gets += 1
        code = url.lstrip("/")
        if code in self.urls:
            return Response(status=200, body=json.dumps({"long_url": self.urls[code]}))
        return Response(status=404, body="{}")

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_shortener():
    return FakeShortener()


@pytest.fixture
def drive():
    """Advance a ManualClock until the given awaitable completes."""

    async def _drive(clock, awaitable, step=0.1, limit=10000):
        task = asyncio.ensure_future(awaitable)
        for _ in range(limit):
            if task.done():
                break
            await clock.advance(step)
        assert task.done(), "run did not finish on the manual clock"
        return task.result()

    return _drive


@pytest.fixture
def patched_transport(monkeypatch):
    """Route runs that build their own transport to a FakeShortener."""
    created = []

    def _factory(base_url="", timeout=None):
        shortener = FakeShortener(base_url, timeout)
        created.append(shortener)
        return shortener

    monkeypatch.setattr("vuflow.orchestrator.HttpxTransport", _factory)
    return created
