"""
Streaming relay: runs one chat request inside the browser page and forwards the
upstream response chunk by chunk.

Each request gets a ``RelaySession`` with its own relay id and bridge channel.
The session waits for the first chunk before the HTTP response is committed, so
a failure before any bytes is still reported as a JSON error. After that, a
failure can only end the stream.
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError

from bridge import ChunkBridge
from config import settings
from errors import NotReady, RelayError, StreamError, Unauthenticated, UpstreamError
from models import ChatRequest

logger = logging.getLogger(__name__)

# Runs in the page with its cookies and fetch. The payload shape mirrors what
# the site sent at the time of writing and will drift with the site.
INJECTED_TASK = """async ({relayId, binding, cookieName, endpoint, modelId, messages}) => {
  const row = document.cookie.split('; ').find(r => r.startsWith(cookieName + '='));
  if (!row) {
    return { ok: false, kind: 'unauthenticated', message: 'Session cookie ' + cookieName + ' not found' };
  }
  let accessToken;
  try {
    const decoded = JSON.parse(atob(decodeURIComponent(row.slice(cookieName.length + 1))));
    accessToken = decoded.access_token;
  } catch (e) {
    return { ok: false, kind: 'unauthenticated', message: 'Session cookie is malformed: ' + String(e) };
  }
  if (!accessToken) {
    return { ok: false, kind: 'unauthenticated', message: 'Session cookie has no access_token' };
  }

  const payload = {
    modelAId: modelId,
    messages: messages.map(m => ({
      id: crypto.randomUUID(),
      role: m.role,
      content: m.content,
      status: 'pending',
    })),
    mode: 'direct',
  };

  let res;
  try {
    res = await fetch(endpoint, {
      method: 'POST',
      headers: {
        'Content-Type': 'application/json',
        'Authorization': `Bearer ${accessToken}`,
      },
      body: JSON.stringify(payload),
      credentials: 'include',
    });
  } catch (e) {
    return { ok: false, kind: 'stream', chunks: 0, message: 'Upstream request failed: ' + String(e) };
  }
  if (!res.ok) {
    return { ok: false, kind: 'upstream', status: res.status, message: `Upstream responded with status ${res.status}` };
  }

  const forward = window[binding];
  let chunks = 0;
  if (!res.body) {
    const text = await res.text();
    if (text) {
      chunks++;
      await forward(relayId, text);
    }
    return { ok: true, chunks };
  }

  const reader = res.body.getReader();
  const decoder = new TextDecoder();
  try {
    while (true) {
      const { done, value } = await reader.read();
      const text = done ? decoder.decode() : decoder.decode(value, { stream: true });
      if (text) {
        chunks++;
        const open = await forward(relayId, text);
        if (open === false) {
          await reader.cancel();
          return { ok: true, chunks, cancelled: true };
        }
      }
      if (done) break;
    }
  } catch (e) {
    return { ok: false, kind: 'stream', chunks, message: 'Upstream stream interrupted: ' + String(e) };
  }
  return { ok: true, chunks };
}"""


class RelayState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


def raise_for_result(result):
    """Map the injected task's result object onto the error taxonomy."""
    if not isinstance(result, dict):
        raise StreamError(f"Injected task returned an unexpected result: {result!r}")
    if result.get("ok"):
        return
    kind = result.get("kind")
    message = result.get("message") or "Injected task failed"
    if kind == "unauthenticated":
        raise Unauthenticated(message)
    if kind == "upstream":
        raise UpstreamError(message, status=result.get("status"))
    raise StreamError(message)


async def run_injected_task(page, relay_id: str, model_id: str, chat: ChatRequest):
    try:
        result = await page.evaluate(
            INJECTED_TASK,
            {
                "relayId": relay_id,
                "binding": settings.BRIDGE_BINDING,
                "cookieName": settings.AUTH_COOKIE_NAME,
                "endpoint": settings.STREAM_ENDPOINT,
                "modelId": model_id,
                "messages": [m.model_dump() for m in chat.messages],
            },
        )
    except PlaywrightError as e:
        raise StreamError(f"Evaluation in the page failed: {e}") from e
    raise_for_result(result)


class RelaySession:
    def __init__(self, bridge: ChunkBridge, model_id: str):
        self.relay_id = uuid.uuid4().hex
        self.model_id = model_id
        self.state = RelayState.PENDING
        self.chunks_sent = 0
        self.started_at = time.monotonic()
        self._bridge = bridge
        self._channel = bridge.open(self.relay_id)
        self._task: Optional[asyncio.Task] = None
        self._first: Optional[str] = None

    def start(self, page, chat: ChatRequest):
        self._task = asyncio.create_task(run_injected_task(page, self.relay_id, self.model_id, chat))
        self._task.add_done_callback(self._channel.finish_from)
        logger.info(f"Relay {self.relay_id} started for model {self.model_id}")

    async def prime(self):
        """Wait for the first chunk; errors raised here still get a JSON response."""
        try:
            self._first = await self._channel.next_chunk()
        except RelayError as e:
            self._finish(RelayState.FAILED, e)
            self.close()
            raise
        except BaseException:
            self.close()
            raise
        self.state = RelayState.STREAMING

    def chunks(self) -> "RelayStream":
        return RelayStream(self)

    async def _iter_chunks(self) -> AsyncIterator[str]:
        try:
            chunk = self._first
            self._first = None
            while chunk is not None:
                self.chunks_sent += 1
                yield chunk
                chunk = await self._channel.next_chunk()
        except RelayError as e:
            # Headers are already out; ending the stream is the only signal left.
            self._finish(RelayState.ABORTED, e)
        else:
            self._finish(RelayState.COMPLETED)
        finally:
            self.close()

    def close(self):
        """Release the bridge channel. Safe to call from any exit path, any number of times."""
        if self.state is RelayState.STREAMING:
            self._finish(RelayState.ABORTED, "client disconnected")
        self._bridge.close(self.relay_id)

    def _finish(self, state: RelayState, reason=None):
        self.state = state
        elapsed = time.monotonic() - self.started_at
        if state is RelayState.COMPLETED:
            logger.info(f"Relay {self.relay_id} completed: {self.chunks_sent} chunks in {elapsed:.1f}s")
        elif state is RelayState.ABORTED:
            logger.warning(f"Relay {self.relay_id} aborted after {self.chunks_sent} chunks: {reason}")
        else:
            logger.error(f"Relay {self.relay_id} failed before streaming: {reason}")


class RelayStream:
    """
    Response body for one relay session.

    Closing the stream or dropping it releases the session's channel even when
    the body was never iterated, e.g. the client left before the first write.
    """

    def __init__(self, session: RelaySession):
        self._session = session
        self._chunks = session._iter_chunks()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        return await self._chunks.__anext__()

    async def aclose(self):
        try:
            await self._chunks.aclose()
        finally:
            self._session.close()

    def __del__(self):
        self._session.close()


class StreamingRelay:
    def __init__(self, session, bridge: ChunkBridge):
        self.session = session
        self.bridge = bridge

    def ensure_ready(self):
        if not self.session.is_ready:
            raise NotReady()

    async def open(self, chat: ChatRequest) -> RelaySession:
        self.ensure_ready()
        relay = RelaySession(self.bridge, chat.modelId or settings.DEFAULT_MODEL_ID)
        relay.start(self.session.page, chat)
        await relay.prime()
        return relay
