"""Correlation table for in-flight task requests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from zelara.errors import RequestTimeoutError
from zelara.link.codec import TaskResponse


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock plus deadline callbacks; swapped for a manual clock in tests."""

    def time(self) -> float: ...

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop's monotonic clock."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_at(when, callback)


@dataclass
class _Entry:
    future: asyncio.Future[TaskResponse]
    deadline: float
    timer: TimerHandle


class PendingRequestTable:
    """Map task ids to waiting futures; each entry ends exactly once."""

    def __init__(self, scheduler: Scheduler | None = None) -> None:
        self.scheduler = scheduler or LoopScheduler()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def pending_ids(self) -> list[str]:
        return list(self._entries)

    def register(self, task_id: str, deadline: float) -> asyncio.Future[TaskResponse]:
        if task_id in self._entries:
            raise ValueError(f"task id already pending: {task_id}")
        future: asyncio.Future[TaskResponse] = asyncio.get_running_loop().create_future()
        timer = self.scheduler.call_at(deadline, lambda: self.expire(task_id))
        self._entries[task_id] = _Entry(future=future, deadline=deadline, timer=timer)
        return future

    def resolve(self, task_id: str, response: TaskResponse) -> bool:
        entry = self._entries.pop(task_id, None)
        if entry is None:
            logger.debug("pending.resolve.unknown task_id={}", task_id)
            return False
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(response)
        return True

    def expire(self, task_id: str) -> bool:
        entry = self._entries.pop(task_id, None)
        if entry is None:
            return False
        logger.warning("pending.expire task_id={}", task_id)
        if not entry.future.done():
            entry.future.set_exception(RequestTimeoutError(f"Request timeout: {task_id}"))
        return True

    def discard(self, task_id: str) -> None:
        entry = self._entries.pop(task_id, None)
        if entry is None:
            return
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.cancel()
