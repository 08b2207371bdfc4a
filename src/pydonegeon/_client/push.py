"""Change notification listener over server-sent events.

The server's push channel carries no data: every ``sync`` event only means
"something changed, pull again". The listener therefore never touches the
store; it just calls back into the coordinator.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import aiohttp

from pydonegeon._constants import SIGNAL_CONNECTED, SIGNAL_SYNC
from pydonegeon._transport import HttpTransport
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonError

_logger = logging.getLogger(__name__)

SignalCallback = Callable[[], None]


class ChangeListener(Protocol):
    """Structural interface shared by the SSE and MQTT listeners."""

    @property
    def is_running(self) -> bool: ...

    def start(self) -> None: ...

    async def stop(self) -> None: ...


@dataclass(frozen=True)
class SseEvent:
    """One dispatched server-sent event."""

    event: str
    data: str
    id: str | None = None


class SseDecoder:
    """Incremental ``text/event-stream`` line decoder.

    Feed it one line at a time (without the line terminator). A blank line
    dispatches the buffered event; lines starting with ``:`` are comments
    (the server's heartbeats) and are ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event = ""
        self._last_id: str | None = None

    def feed(self, line: str) -> SseEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            self._last_id = value
        # "retry" and unknown fields are ignored; reconnect timing is ours.
        return None

    def _dispatch(self) -> SseEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = SseEvent(event=self._event or "message", data="\n".join(self._data), id=self._last_id)
        self._data = []
        self._event = ""
        return event


class SseChangeListener:
    """Holds one persistent event-stream connection and reconnects with backoff."""

    def __init__(
        self,
        *,
        config: DonegeonConfig,
        transport: HttpTransport,
        on_signal: SignalCallback,
    ) -> None:
        self._config = config
        self._transport = transport
        self._on_signal = on_signal
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._connections = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def connections(self) -> int:
        """How many times the server confirmed a connection."""
        return self._connections

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._stopping = True
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])
        _logger.debug("Push listener stopped")

    async def _run(self) -> None:
        delay = self._config.push_reconnect_initial
        while not self._stopping:
            try:
                async with self._transport.open_stream(self._config.events_endpoint) as resp:
                    delay = self._config.push_reconnect_initial
                    await self._consume(resp)
                _logger.debug("Push stream ended by server")
            except (DonegeonError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                _logger.warning("Push channel error: %s; reconnecting in %.1fs", exc, delay)
            if self._stopping:
                return
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._config.push_reconnect_max)

    async def _consume(self, resp: aiohttp.ClientResponse) -> None:
        decoder = SseDecoder()
        async for raw_line in resp.content:
            line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
            event = decoder.feed(line)
            if event is not None:
                self._dispatch(event)

    def _dispatch(self, event: SseEvent) -> None:
        data = event.data.strip()
        if data == SIGNAL_SYNC:
            _logger.debug("Received sync signal")
            self._signal()
        elif data == SIGNAL_CONNECTED:
            self._connections += 1
            if self._connections > 1:
                # Signals sent while we were disconnected are lost; catch up.
                _logger.debug("Push channel reconnected; requesting catch-up sync")
                self._signal()
            else:
                _logger.debug("Push channel connected")
        else:
            _logger.debug("Ignoring push event %s data=%r", event.event, data)

    def _signal(self) -> None:
        try:
            self._on_signal()
        except Exception:
            _logger.debug("push signal callback failed", exc_info=True)
