from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest

from zelara.config import Settings
from zelara.link.codec import TaskRequest, TaskResponse, decode_request, encode_response

_CLOSED = object()


class FakeTransport:
    """In-process transport; the test plays the Desktop side."""

    def __init__(self, address: str) -> None:
        self.address = address
        self.sent: list[str] = []
        self.closed = False
        self.send_error: Exception | None = None
        self._inbound: asyncio.Queue[object] = asyncio.Queue()

    async def send(self, frame: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)

    async def close(self) -> None:
        self.closed = True
        self._inbound.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        while True:
            item = await self._inbound.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item  # type: ignore[misc]

    def feed(self, frame: str | bytes) -> None:
        self._inbound.put_nowait(frame)

    def reply(self, request: TaskRequest, *, ok: bool = True, result: object = None) -> None:
        self.feed(encode_response(TaskResponse(task_id=request.task_id, ok=ok, result=result)))

    def peer_close(self) -> None:
        self._inbound.put_nowait(_CLOSED)

    def break_stream(self, error: Exception) -> None:
        self._inbound.put_nowait(error)

    async def wait_sent(self, count: int = 1) -> None:
        for _ in range(200):
            if len(self.sent) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} frames, got {len(self.sent)}")

    def requests(self) -> list[TaskRequest]:
        return [decode_request(frame) for frame in self.sent]


class FakeNetwork:
    """Transport factory whose candidates accept, refuse, or hang."""

    def __init__(self, **behaviors: str) -> None:
        self.behaviors = behaviors
        self.attempts: list[tuple[str, int]] = []
        self.transports: dict[str, FakeTransport] = {}

    async def __call__(self, address: str, port: int) -> FakeTransport:
        self.attempts.append((address, port))
        behavior = self.behaviors.get(address, "refuse")
        if behavior == "accept":
            transport = FakeTransport(address)
            self.transports[address] = transport
            return transport
        if behavior == "hang":
            await asyncio.Event().wait()
        if behavior == "close":
            raise ConnectionResetError("Connection closed")
        raise ConnectionRefusedError(f"[Errno 111] Connect call failed ('{address}', {port})")


class _Timer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when the test advances it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[_Timer] = []

    def time(self) -> float:
        return self.now

    def call_at(self, when: float, callback: Callable[[], None]) -> _Timer:
        timer = _Timer(when, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [timer for timer in self.timers if not timer.cancelled and timer.when <= self.now]
        for timer in sorted(due, key=lambda item: item.when):
            self.timers.remove(timer)
            timer.callback()

    @property
    def live_timers(self) -> int:
        return sum(1 for timer in self.timers if not timer.cancelled)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(connect_attempt_timeout=0.05, home=tmp_path / "home")


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_network() -> type[FakeNetwork]:
    return FakeNetwork


@pytest.fixture
def settle() -> Callable[[], Awaitable[None]]:
    async def _settle() -> None:
        for _ in range(10):
            await asyncio.sleep(0)

    return _settle
