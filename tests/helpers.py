"""Shared builders for sniwatch tests."""
import asyncio

SAMPLE_LINE = (
    "2025/10/13 22:41:12.466126 [INFO] SNI TCP: assets.alicdn.com "
    "192.168.1.100:38894 -> 92.123.206.67:443"
)


def sni_line(domain, protocol="TCP", target=False,
             source="192.168.1.100:38894", destination="92.123.206.67:443",
             timestamp="2025/10/13 22:41:12.466126"):
    marker = " TARGET" if target else ""
    return f"{timestamp} [INFO] SNI {protocol}{marker}: {domain} {source} -> {destination}"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeConnection:
    """Async-iterable websocket stand-in: replays frames, then fails, ends or holds open."""

    def __init__(self, frames, error=None, hold=False):
        self.frames = list(frames)
        self.error = error
        self.hold = hold
        self.closed = asyncio.Event()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed.set()
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            await asyncio.sleep(0)
            yield frame
        if self.error is not None:
            raise self.error
        if self.hold:
            await self.closed.wait()

    async def close(self):
        self.closed.set()


class FakeConnector:
    """Stands in for websockets.connect; each call consumes the next script."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        if not self.scripts:
            return FakeConnection([], hold=True)
        script = self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script
        return script


async def wait_for_condition(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)
