"""
sniwatch/stream/source.py

Reconnecting push stream of raw log lines.

PURPOSE:
    Owns the websocket to the appliance's log endpoint and hands every line
    to a callback in arrival order. On drop or error it reports once through
    `on_error`, waits `reconnect_delay`, and dials again.

STATE MACHINE:
    IDLE -> CONNECTING -> OPEN -> RETRY_PENDING -> CONNECTING -> ...
    any state -> CLOSED (via close(); terminal)

DELIVERY:
    At most once. Nothing is replayed after a reconnect, so lines that were
    already delivered are never delivered again or out of order.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

import websockets

from sniwatch.base.exceptions import ErrorCode, StreamError

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]
ErrorCallback = Callable[[StreamError], None]


class SourceState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RETRY_PENDING = "retry_pending"
    CLOSED = "closed"


class LineSource:
    def __init__(
        self,
        url: str,
        on_line: LineCallback,
        on_error: Optional[ErrorCallback] = None,
        *,
        reconnect_delay: float = 3.0,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._on_line = on_line
        self._on_error = on_error
        self._connect = connect or websockets.connect
        self._state = SourceState.IDLE
        self._closed = asyncio.Event()
        self._connection: Any = None

        # Counters for status display and tests
        self.connect_count = 0
        self.error_count = 0
        self.lines_delivered = 0

    @property
    def state(self) -> SourceState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _set_state(self, state: SourceState) -> None:
        if state != self._state:
            logger.debug(f"[LineSource] {self._state.value} -> {state.value}")
            self._state = state

    async def run(self) -> None:
        """Connect, stream, reconnect; returns once close() has been called."""
        while not self._closed.is_set():
            self._set_state(SourceState.CONNECTING)
            error: Optional[StreamError] = None

            try:
                async with self._connect(self.url) as connection:
                    self._connection = connection
                    self._set_state(SourceState.OPEN)
                    self.connect_count += 1
                    logger.info(f"[LineSource] Connected to {self.url}")

                    async for message in connection:
                        if self._closed.is_set():
                            break
                        self._deliver(message)

                if not self._closed.is_set():
                    error = StreamError(
                        ErrorCode.STREAM_DROPPED,
                        "Log stream closed by peer",
                        details={"url": self.url},
                    )
            except asyncio.CancelledError:
                self._set_state(SourceState.CLOSED)
                raise
            except Exception as e:
                if not self._closed.is_set():
                    code = ErrorCode.STREAM_CONNECT_FAILED if self._state == SourceState.CONNECTING else ErrorCode.STREAM_DROPPED
                    error = StreamError(code, f"Log stream error: {e}", details={"url": self.url})
            finally:
                self._connection = None

            if self._closed.is_set():
                break

            if error is not None:
                self._report(error)

            self._set_state(SourceState.RETRY_PENDING)
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self.reconnect_delay)
            except asyncio.TimeoutError:
                pass

        self._set_state(SourceState.CLOSED)
        logger.info("[LineSource] Closed")

    async def close(self) -> None:
        """Stop for good. Wakes a pending retry and closes any open socket."""
        self._closed.set()
        connection = self._connection
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"[LineSource] Error while closing connection: {e}")
        if self._state != SourceState.OPEN:
            self._set_state(SourceState.CLOSED)

    def _deliver(self, message: Any) -> None:
        if isinstance(message, (bytes, bytearray, memoryview)):
            message = bytes(message).decode("utf-8", errors="replace")
        else:
            message = str(message)

        for line in message.splitlines():
            if not line.strip():
                continue
            try:
                self._on_line(line)
                self.lines_delivered += 1
            except Exception as e:
                logger.error(f"[LineSource] Line consumer failed: {e}", exc_info=True)

    def _report(self, error: StreamError) -> None:
        self.error_count += 1
        logger.warning(f"[LineSource] {error}; retrying in {self.reconnect_delay:.1f}s")
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            logger.error(f"[LineSource] Error callback failed: {e}", exc_info=True)
