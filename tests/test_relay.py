import gc

import pytest

from config import settings
from errors import NotReady, StreamError, Unauthenticated, UpstreamError
from models import ChatMessage, ChatRequest
from relay import RelayState, raise_for_result

CHAT = ChatRequest(messages=[ChatMessage(role="user", content="hello")])


async def collect(session):
    return [chunk async for chunk in session.chunks()]


@pytest.mark.asyncio
async def test_open_streams_chunks_and_completes(make_relay, bridge):
    relay, page = make_relay(chunks=["one", "two", "three"])

    session = await relay.open(CHAT)
    assert session.state is RelayState.STREAMING

    assert await collect(session) == ["one", "two", "three"]
    assert session.state is RelayState.COMPLETED
    assert session.chunks_sent == 3
    assert bridge.active == 0


@pytest.mark.asyncio
async def test_open_sends_relay_arguments_to_page(make_relay):
    relay, page = make_relay(chunks=["x"])

    session = await relay.open(CHAT)
    await collect(session)

    (arg,) = page.calls
    assert arg["relayId"] == session.relay_id
    assert arg["binding"] == settings.BRIDGE_BINDING
    assert arg["cookieName"] == settings.AUTH_COOKIE_NAME
    assert arg["endpoint"] == settings.STREAM_ENDPOINT
    assert arg["modelId"] == settings.DEFAULT_MODEL_ID
    assert arg["messages"] == [{"role": "user", "content": "hello"}]


@pytest.mark.asyncio
async def test_empty_model_id_falls_back_to_default(make_relay):
    relay, page = make_relay()

    session = await relay.open(ChatRequest(modelId="", messages=CHAT.messages))
    await collect(session)

    assert session.model_id == settings.DEFAULT_MODEL_ID


@pytest.mark.asyncio
async def test_open_rejects_when_not_ready(make_relay, bridge):
    relay, page = make_relay(ready=False)

    with pytest.raises(NotReady):
        await relay.open(CHAT)
    assert page.calls == []
    assert bridge.active == 0


@pytest.mark.asyncio
async def test_failure_before_first_chunk_raises_from_open(make_relay, bridge):
    relay, _ = make_relay(result={"ok": False, "kind": "upstream", "status": 429, "message": "Upstream responded with status 429"})

    with pytest.raises(UpstreamError) as exc_info:
        await relay.open(CHAT)

    assert exc_info.value.status == 429
    assert bridge.active == 0


@pytest.mark.asyncio
async def test_failure_after_first_chunk_aborts_quietly(make_relay, bridge):
    relay, _ = make_relay(chunks=["only"], result={"ok": False, "kind": "stream", "message": "reset"})

    session = await relay.open(CHAT)

    assert await collect(session) == ["only"]
    assert session.state is RelayState.ABORTED
    assert bridge.active == 0


@pytest.mark.asyncio
async def test_unexpected_page_exception_becomes_stream_error(make_relay):
    relay, _ = make_relay(error=RuntimeError("boom"))

    with pytest.raises(StreamError, match="boom"):
        await relay.open(CHAT)


@pytest.mark.asyncio
async def test_client_disconnect_stops_page_forwarding(make_relay, bridge):
    relay, page = make_relay(chunks=[f"c{i}" for i in range(10)], pause=0.01)

    session = await relay.open(CHAT)
    stream = session.chunks()
    assert await stream.__anext__() == "c0"
    await stream.aclose()

    assert session.state is RelayState.ABORTED
    assert bridge.active == 0

    await session._task
    assert page.acks[0] is True
    assert page.acks[-1] is False
    assert len(page.acks) < 10


@pytest.mark.asyncio
async def test_unread_stream_closed_releases_channel(make_relay, bridge):
    relay, page = make_relay(chunks=[f"c{i}" for i in range(10)], pause=0.01)

    session = await relay.open(CHAT)
    stream = session.chunks()
    await stream.aclose()

    assert bridge.active == 0
    assert session.state is RelayState.ABORTED

    await session._task
    assert page.acks[-1] is False
    assert len(page.acks) < 10


@pytest.mark.asyncio
async def test_unread_stream_dropped_releases_channel(make_relay, bridge):
    relay, page = make_relay(chunks=[f"c{i}" for i in range(10)], pause=0.01)

    session = await relay.open(CHAT)
    stream = session.chunks()
    del stream
    gc.collect()

    assert bridge.active == 0

    await session._task
    assert page.acks[-1] is False


def test_raise_for_result_accepts_success():
    raise_for_result({"ok": True, "chunks": 4})


@pytest.mark.parametrize(
    "result, error",
    [
        ({"ok": False, "kind": "unauthenticated", "message": "no cookie"}, Unauthenticated),
        ({"ok": False, "kind": "upstream", "status": 500, "message": "bad"}, UpstreamError),
        ({"ok": False, "kind": "stream", "message": "reset"}, StreamError),
        ({"ok": False}, StreamError),
        (None, StreamError),
    ],
)
def test_raise_for_result_maps_failures(result, error):
    with pytest.raises(error):
        raise_for_result(result)

