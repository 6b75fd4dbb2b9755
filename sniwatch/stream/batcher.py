"""
sniwatch/stream/batcher.py

Flushes incoming lines into the two visible windows on a fixed cadence.

PURPOSE:
    Decouples network burstiness from render cost. Lines arriving from the
    LineSource only land in a pending queue; windows change on flush ticks
    only, and each tick drains the whole queue.

CHANNELS:
    LOGS     raw lines, plus synthetic transport-error markers
    DOMAINS  the same raw lines; rendered as parsed ConnectionEvents

    Each channel has its own window, pause flag and snapshot. A paused channel
    drops a tick's lines instead of buffering them for replay, so memory stays
    bounded while paused. Error markers reach LOGS even while it is paused.

UNSEEN COUNTER:
    Counts domain-channel lines that introduce a TARGET hit, or a host or IP
    that has not been rendered yet, while the operator is not looking at the
    domain view. The consumer resets it.

LIFECYCLE:
    start() schedules tick() on the running loop. close() stops the schedule;
    a tick that still fires afterwards does nothing.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from sniwatch.base.config import SniWatchConfig
from sniwatch.data.storage import KeyValueStore
from sniwatch.stream.events import ConnectionEvent, is_novel, novelty_keys, parse_line, parse_lines

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    LOGS = "logs"
    DOMAINS = "domains"


SNAPSHOT_KEYS: Dict[Channel, str] = {
    Channel.LOGS: "logs_lines",
    Channel.DOMAINS: "domains_lines",
}

FlushListener = Callable[[Channel, List[str]], None]


class WindowBuffer:
    """The N most recent lines of one channel; appending evicts the oldest."""

    def __init__(self, max_size: int = 1000, initial: Iterable[str] = ()):
        self._lines: deque[str] = deque(initial, maxlen=max_size)

    @property
    def max_size(self) -> int:
        return self._lines.maxlen

    def extend(self, lines: Iterable[str]) -> None:
        self._lines.extend(lines)

    def clear(self) -> None:
        self._lines.clear()

    def snapshot(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)


class _RecencySet:
    """Set of keys bounded to the most recently added `max_size` entries."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._keys: OrderedDict[str, None] = OrderedDict()

    def add(self, key: str) -> None:
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self.max_size:
            self._keys.popitem(last=False)

    def clear(self) -> None:
        self._keys.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


@dataclass
class _ChannelState:
    window: WindowBuffer
    snapshot_key: str
    paused: bool = False
    committed: List[str] = field(default_factory=list)


class StreamBatcher:
    def __init__(
        self,
        *,
        window_size: int = 1000,
        flush_interval: float = 0.1,
        store: Optional[KeyValueStore] = None,
        error_marker: str = "[WS ERROR]",
        snapshot_keys: Optional[Dict[Channel, str]] = None,
    ):
        self.window_size = window_size
        self.flush_interval = flush_interval
        self.error_marker = error_marker
        self._store = store
        keys = snapshot_keys or SNAPSHOT_KEYS

        # (text, is_marker) in arrival order; drained on every tick
        self._pending: List[Tuple[str, bool]] = []
        self._listeners: List[FlushListener] = []
        self._task: Optional[asyncio.Task] = None
        self._closed = False

        self._channels: Dict[Channel, _ChannelState] = {
            channel: _ChannelState(
                window=WindowBuffer(window_size, self._load_snapshot(keys[channel])),
                snapshot_key=keys[channel],
            )
            for channel in Channel
        }

        self.unseen = 0
        self.focused = False
        self.ticks = 0
        self._seen = _RecencySet(window_size * 2)
        for line in self._channels[Channel.DOMAINS].window:
            self._remember(parse_line(line))

    @classmethod
    def from_config(cls, config: SniWatchConfig, store: Optional[KeyValueStore] = None) -> "StreamBatcher":
        return cls(
            window_size=config.stream.window_size,
            flush_interval=config.stream.flush_interval,
            store=store,
            error_marker=config.stream.error_marker,
        )

    # ------------------------------------------------------------------
    # Input side (called on message arrival; never touches a window)
    # ------------------------------------------------------------------

    def push(self, line: str) -> None:
        if self._closed:
            return
        self._pending.append((line, False))

    def mark_error(self, marker: Optional[str] = None) -> None:
        """Queue a transport-error marker for the raw log window."""
        if self._closed:
            return
        self._pending.append((marker or self.error_marker, True))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """
        Commit the pending queue into every unpaused channel.

        Returns True when any window changed. The queue is emptied either way.
        """
        if self._closed or not self._pending:
            return False

        pending, self._pending = self._pending, []
        self.ticks += 1
        lines = [text for text, is_marker in pending if not is_marker]

        logs = self._channels[Channel.LOGS]
        if logs.paused:
            logs.committed = [text for text, is_marker in pending if is_marker]
        else:
            logs.committed = [text for text, _ in pending]

        domains = self._channels[Channel.DOMAINS]
        domains.committed = [] if domains.paused else lines
        if domains.committed:
            novel = self._count_novel(domains.committed)
            if not self.focused:
                self.unseen += novel

        changed = False
        for channel, state in self._channels.items():
            if not state.committed:
                continue
            state.window.extend(state.committed)
            self._persist(state)
            self._notify(channel, state.committed)
            changed = True
        return changed

    def _count_novel(self, lines: List[str]) -> int:
        count = 0
        for line in lines:
            event = parse_line(line)
            if is_novel(event, self._seen):
                count += 1
            self._remember(event)
        return count

    def _remember(self, event: Optional[ConnectionEvent]) -> None:
        if event is None:
            return
        for key in novelty_keys(event):
            self._seen.add(key)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Schedule flush ticks on the running event loop."""
        if self._closed:
            raise RuntimeError("StreamBatcher is closed")
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._flush_loop())
        return self._task

    async def _flush_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.flush_interval)
            try:
                self.tick()
            except Exception as e:
                logger.error(f"[Batcher] Flush tick failed: {e}", exc_info=True)

    def close(self) -> None:
        """Stop flushing. Later pushes and ticks are ignored."""
        self._closed = True
        self._pending.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def subscribe(self, listener: FlushListener) -> None:
        """Call `listener(channel, lines)` with each tick's committed lines."""
        self._listeners.append(listener)

    def set_paused(self, channel: Channel, paused: bool) -> None:
        self._channels[channel].paused = paused

    def is_paused(self, channel: Channel) -> bool:
        return self._channels[channel].paused

    def set_focused(self, focused: bool) -> None:
        self.focused = focused

    def reset_unseen(self) -> None:
        self.unseen = 0

    def lines(self, channel: Channel) -> List[str]:
        return self._channels[channel].window.snapshot()

    def events(self, channel: Channel = Channel.DOMAINS) -> List[ConnectionEvent]:
        return parse_lines(self._channels[channel].window)

    def window(self, channel: Channel) -> WindowBuffer:
        return self._channels[channel].window

    def clear_channel(self, channel: Channel) -> None:
        state = self._channels[channel]
        state.window.clear()
        if self._store is not None:
            self._store.remove(state.snapshot_key)
        if channel is Channel.DOMAINS:
            self.unseen = 0
            self._seen.clear()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _load_snapshot(self, key: str) -> List[str]:
        if self._store is None:
            return []
        data = self._store.get(key)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning(f"[Batcher] Ignoring snapshot {key!r}: expected a list, got {type(data).__name__}")
            return []
        lines = [item for item in data if isinstance(item, str)]
        return lines[-self.window_size:]

    def _persist(self, state: _ChannelState) -> None:
        if self._store is None:
            return
        self._store.set(state.snapshot_key, state.window.snapshot())

    def _notify(self, channel: Channel, lines: List[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(channel, list(lines))
            except Exception as e:
                name = getattr(listener, "__name__", str(listener))
                logger.error(f"[Batcher] Flush listener {name} failed: {e}", exc_info=True)
