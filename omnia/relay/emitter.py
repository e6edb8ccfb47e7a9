"""
omnia.relay.emitter — Outbound NDJSON event stream for one turn.

The orchestrator runs as its own task and pushes events through ``emit()``;
the HTTP response drains them with ``stream()``, one body chunk per event,
so every line reaches the browser as soon as it is produced.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from omnia.core.models import OutboundEvent

logger = logging.getLogger("omnia.relay.emitter")

DISCONNECT_POLL_SECONDS = 1.0


class NDJSONEmitter:
    """
    Queue between the orchestrator task and the streaming response body.

    ``close()`` ends the stream after the events already queued.  Once the
    client is gone (``disconnected``) nothing else is written and further
    ``emit()`` calls are discarded.
    """

    def __init__(self, request_id: str = "", poll_interval: float = DISCONNECT_POLL_SECONDS) -> None:
        self.request_id = request_id
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._poll_interval = poll_interval
        self._closed = False
        self.disconnected = False
        self.emitted = 0
        self._disconnect_callbacks: list[Callable[[], object]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: OutboundEvent) -> bool:
        """Queue one event; returns ``False`` if it was discarded."""
        if self._closed:
            logger.debug("[%s] Discarding %s after close", self.request_id, event.type)
            return False
        if not event.request_id:
            event.request_id = self.request_id
        self._queue.put_nowait(event.to_line())
        self.emitted += 1
        return True

    def on_disconnect(self, callback: Callable[[], object]) -> Callable[[], None]:
        """Call ``callback`` when the client goes away; returns a function that unregisters it."""
        self._disconnect_callbacks.append(callback)

        def release() -> None:
            if callback in self._disconnect_callbacks:
                self._disconnect_callbacks.remove(callback)

        return release

    def close(self, disconnected: bool = False) -> None:
        if disconnected and not self.disconnected:
            self.disconnected = True
            logger.info("[%s] Client disconnected", self.request_id)
            for callback in list(self._disconnect_callbacks):
                callback()
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def stream(
        self,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[bytes]:
        """Yield queued lines until ``close()``; polls ``is_disconnected`` while idle."""
        finished = False
        try:
            while True:
                try:
                    line = await asyncio.wait_for(self._queue.get(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    if is_disconnected is not None and await is_disconnected():
                        break
                    continue
                if line is None:
                    finished = True
                    break
                yield line
        finally:
            if not finished:
                self.close(disconnected=True)
