from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable

TERMINAL_EVENTS = frozenset({"complete", "error"})

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


class EventStream:
    """
    Ordered, single-terminal event channel between a worker thread and an
    SSE response.

    publish() never blocks and may be called from any thread. Delivery is
    marshalled onto the event loop, so ordering and the terminal check are
    decided in one place. Everything published after the first terminal
    event is dropped.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        heartbeat_seconds: float = 15.0,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()
        self._closed = False
        self.heartbeat_seconds = heartbeat_seconds

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: str, data: dict[str, Any]) -> None:
        try:
            self._loop.call_soon_threadsafe(self._deliver, event, dict(data))
        except RuntimeError as exc:
            print(f"[streaming] publish_dropped event={event} error={exc}")

    def _deliver(self, event: str, data: dict[str, Any]) -> None:
        if self._closed:
            print(f"[streaming] dropped_after_terminal event={event}")
            return
        if event in TERMINAL_EVENTS:
            self._closed = True
        self._queue.put_nowait((event, data))

    async def iter_sse(
        self,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[str]:
        while True:
            try:
                event, data = await asyncio.wait_for(
                    self._queue.get(), timeout=self.heartbeat_seconds
                )
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    print("[streaming] client_disconnected")
                    return
                yield ": keep-alive\n\n"
                continue
            yield format_sse(event, data)
            if event in TERMINAL_EVENTS:
                return
