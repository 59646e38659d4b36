"""
Callback channels between injected page tasks and the controlling process.

One binding is exposed on the browser context for the whole process lifetime.
Injected tasks call it as ``window[binding](relayId, chunk)`` and each call is
routed to the channel registered for that relay id, so concurrent relays never
share a channel. The binding returns ``false`` once a channel is closed, which
tells the page to stop reading its upstream response.
"""

import asyncio
import logging
from typing import Dict, Optional

from config import settings
from errors import RelayError, StreamError

logger = logging.getLogger(__name__)

_END = object()


class RelayChannel:
    def __init__(self, relay_id: str, idle_timeout: Optional[float] = None):
        self.relay_id = relay_id
        self.idle_timeout = idle_timeout
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, chunk: str) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(chunk)
        return True

    def finish(self, error: Optional[BaseException] = None):
        self._queue.put_nowait(error if error is not None else _END)

    def finish_from(self, task: asyncio.Task):
        """Done-callback for the injected task: turn its outcome into the end marker."""
        if task.cancelled():
            self.finish(StreamError("Injected task was cancelled"))
            return
        error = task.exception()
        if error is not None and not isinstance(error, RelayError):
            wrapped = StreamError(f"Injected task failed: {error}")
            wrapped.__cause__ = error
            error = wrapped
        self.finish(error)

    async def next_chunk(self) -> Optional[str]:
        """Next chunk in arrival order, ``None`` at a clean end, or raise the relay error."""
        try:
            item = await asyncio.wait_for(self._queue.get(), self.idle_timeout)
        except asyncio.TimeoutError:
            raise StreamError(f"No chunk received for {self.idle_timeout}s")
        if item is _END:
            return None
        if isinstance(item, BaseException):
            raise item
        return item


class ChunkBridge:
    def __init__(self, binding: str = settings.BRIDGE_BINDING):
        self.binding = binding
        self._channels: Dict[str, RelayChannel] = {}

    async def install(self, target):
        """Expose the routing binding on a playwright BrowserContext or Page."""
        await target.expose_binding(self.binding, self.deliver)
        logger.info(f"Chunk bridge installed as window.{self.binding}")

    def open(self, relay_id: str) -> RelayChannel:
        if relay_id in self._channels:
            raise ValueError(f"Relay {relay_id} already has an open channel")
        channel = RelayChannel(relay_id, idle_timeout=settings.CHUNK_IDLE_TIMEOUT)
        self._channels[relay_id] = channel
        return channel

    def close(self, relay_id: str):
        channel = self._channels.pop(relay_id, None)
        if channel is not None:
            channel.closed = True

    def deliver(self, source, relay_id: str, chunk: str) -> bool:
        channel = self._channels.get(relay_id)
        if channel is None:
            logger.debug(f"Dropping chunk for closed relay {relay_id}")
            return False
        return channel.push(chunk)

    @property
    def active(self) -> int:
        return len(self._channels)
