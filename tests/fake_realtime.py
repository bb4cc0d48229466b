"""In-memory stand-ins for a websockets connection.

Learn: RealtimeChannel takes a `connector` (url → socket), so tests pass
a FakeConnector instead of websockets.connect. FakeSocket is
async-iterable for inbound frames, records send(), and close() ends the
iteration the way a closed connection does.
"""

import asyncio
import json


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)

    def push(self, event, data=None):
        frame = {"type": event}
        if data is not None:
            frame["data"] = data
        self._inbox.put_nowait(json.dumps(frame))

    def push_raw(self, raw):
        self._inbox.put_nowait(raw)

    def drop(self):
        """Server-side disconnect."""
        self._inbox.put_nowait(None)

    def fail(self, exc):
        """The next read raises `exc`."""
        self._inbox.put_nowait(exc)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def sent_types(self):
        return [m["type"] for m in self.sent]


class FakeConnector:
    """Hands out scripted outcomes; refuses once the script runs out."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else ConnectionRefusedError("refused")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def eventually(predicate, timeout=1.0):
    """Poll until predicate() is truthy; fail the test after `timeout`."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
