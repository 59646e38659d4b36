"""Shared fixtures: a simulated page that drives the real chunk bridge."""

import asyncio

import pytest
from fastapi.testclient import TestClient

import handler
import main
from bridge import ChunkBridge
from browser import SessionState
from relay import StreamingRelay


class FakePage:
    """
    Stands in for a playwright Page.

    evaluate() plays a scripted injected task: it forwards each chunk through the
    exposed binding, like the real script does, then returns ``result`` or
    raises ``error``.
    """

    def __init__(self, bridge, chunks=(), result=None, error=None, pause=0):
        self.bindings = {bridge.binding: bridge.deliver}
        self.chunks = chunks
        self.result = result if result is not None else {"ok": True}
        self.error = error
        self.pause = pause
        self.calls = []
        self.acks = []

    def is_closed(self):
        return False

    async def evaluate(self, script, arg):
        self.calls.append(arg)
        forward = self.bindings[arg["binding"]]
        chunks = self.chunks(arg) if callable(self.chunks) else self.chunks
        for chunk in chunks:
            await asyncio.sleep(self.pause)
            is_open = forward(None, arg["relayId"], chunk)
            self.acks.append(is_open)
            if not is_open:
                return {"ok": True, "cancelled": True}
        if self.error is not None:
            raise self.error
        return self.result


class FakeSession:
    def __init__(self, page=None, ready=True):
        self._page = page
        self.state = SessionState.READY if ready else SessionState.UNINITIALIZED

    @property
    def page(self):
        return self._page if self.state is SessionState.READY else None

    @property
    def is_ready(self):
        return self.page is not None


@pytest.fixture
def bridge():
    return ChunkBridge()


@pytest.fixture
def make_relay(bridge):
    def _make(ready=True, **page_kwargs):
        page = FakePage(bridge, **page_kwargs)
        return StreamingRelay(FakeSession(page, ready=ready), bridge), page

    return _make


@pytest.fixture
def use_relay(monkeypatch, make_relay):
    """Wire a simulated relay into the app and return its page."""

    def _use(ready=True, **page_kwargs):
        relay, page = make_relay(ready=ready, **page_kwargs)
        monkeypatch.setattr(handler, "relay", relay)
        return page

    return _use


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main.limiter, "enabled", False)
    # No context manager: the lifespan would launch a real browser.
    return TestClient(main.app)
