import json

import pytest
from fastapi.testclient import TestClient

from gateway.config import Settings
from gateway.main import create_app

AUTH = {"Authorization": "Bearer secret"}


class FakeBackend:
    """Records calls and returns a canned reply (or raises it if it is an exception)."""

    def __init__(self, reply=None):
        self.reply = reply
        self.calls = []

    async def run(self, model, inputs):
        self.calls.append((model, inputs))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def sse_events(body: str):
    """Split an SSE body into decoded payloads; the sentinel stays a string."""
    events = []
    for block in body.split("\n\n"):
        if not block:
            continue
        assert block.startswith("data: ")
        raw = block[len("data: "):]
        events.append(raw if raw == "[DONE]" else json.loads(raw))
    return events


async def collect(agen):
    return [frame async for frame in agen]


@pytest.fixture
def settings():
    return Settings(auth_token="secret")


@pytest.fixture
def make_client(settings):
    def _make(reply=None, app_settings=None):
        backend = FakeBackend(reply)
        app = create_app(app_settings or settings, backend=backend)
        return TestClient(app), backend

    return _make
