"""Persisted point ledger and module unlock state."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from zelara.config import Settings
from zelara.errors import PersistenceError
from zelara.storage import FileKeyValueStore, KeyValueStore

DEFAULT_PROGRESS_KEY = "@zelara_progress"
DEFAULT_UNLOCK_THRESHOLDS: Mapping[str, int] = {"finance": 50}
DEFAULT_MODULES: tuple[str, ...] = ("green",)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _string_set(value: object) -> frozenset[str] | None:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return None
    return frozenset(value)


@dataclass(frozen=True)
class ProgressRecord:
    """One complete, self-consistent snapshot of the ledger."""

    points: int = 0
    unlocked_modules: frozenset[str] = field(default_factory=frozenset)
    available_unlocks: frozenset[str] = field(default_factory=frozenset)
    tasks_completed: frozenset[str] = field(default_factory=frozenset)
    last_updated: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> dict[str, object]:
        return {
            "points": self.points,
            "unlocked_modules": sorted(self.unlocked_modules),
            "available_unlocks": sorted(self.available_unlocks),
            "tasks_completed": sorted(self.tasks_completed),
            "last_updated": self.last_updated.isoformat(),
        }

    @staticmethod
    def from_payload(payload: object) -> ProgressRecord | None:
        if not isinstance(payload, dict):
            return None
        points = payload.get("points")
        if isinstance(points, bool) or not isinstance(points, int) or points < 0:
            return None
        unlocked = _string_set(payload.get("unlocked_modules"))
        available = _string_set(payload.get("available_unlocks"))
        completed = _string_set(payload.get("tasks_completed", []))
        if unlocked is None or available is None or completed is None:
            return None
        try:
            last_updated = datetime.fromisoformat(str(payload.get("last_updated")))
        except ValueError:
            last_updated = _utcnow()
        return ProgressRecord(
            points=points,
            unlocked_modules=unlocked,
            # A module is never both unlocked and available.
            available_unlocks=available - unlocked,
            tasks_completed=completed,
            last_updated=last_updated,
        )


@dataclass(frozen=True)
class AwardResult:
    new_total: int
    newly_unlocked: list[str]


@dataclass(frozen=True)
class UnlockProgress:
    module_name: str
    required_points: int
    current_points: int
    fraction: float


class ProgressStore:
    """Ledger of points and unlocks stored as one JSON record under one key.

    Every mutation is a read-modify-write of the stored record under a lock,
    so concurrent callers never persist a stale snapshot. Task ids are
    credited once: awarding again for a recorded ``task_id`` adds nothing.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        thresholds: Mapping[str, int] | None = None,
        default_modules: Iterable[str] = DEFAULT_MODULES,
        key: str = DEFAULT_PROGRESS_KEY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.storage = storage
        self.thresholds = dict(DEFAULT_UNLOCK_THRESHOLDS if thresholds is None else thresholds)
        self.default_modules = frozenset(default_modules)
        self.key = key
        self._clock = clock
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Settings, storage: KeyValueStore | None = None) -> ProgressStore:
        return cls(
            storage or FileKeyValueStore(settings.resolve_home()),
            thresholds=settings.unlock_thresholds,
            default_modules=settings.default_modules,
            key=settings.progress_key,
        )

    def default_record(self) -> ProgressRecord:
        return ProgressRecord(unlocked_modules=self.default_modules, last_updated=self._clock())

    def load_progress(self) -> ProgressRecord:
        """Return the stored record, initializing it on first access.

        Storage failures degrade to an in-memory default rather than raising.
        """
        with self._lock:
            try:
                record = self._read()
                if record is None:
                    logger.info("progress.init key={}", self.key)
                    record = self._write(self.default_record())
            except PersistenceError as exc:
                logger.error("progress.load.failed error={}", exc)
                return self.default_record()
            return record

    def get_points(self) -> int:
        return self.load_progress().points

    def get_unlocked_modules(self) -> list[str]:
        return sorted(self.load_progress().unlocked_modules)

    def get_available_unlocks(self) -> list[str]:
        return sorted(self.load_progress().available_unlocks)

    def award_points(self, amount: int, task_id: str | None = None) -> AwardResult:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError(f"amount must be a non-negative integer, got {amount!r}")

        with self._lock:
            record = self._current()
            points = record.points
            completed = set(record.tasks_completed)
            if task_id and task_id in completed:
                logger.info("progress.award.duplicate task_id={}", task_id)
            else:
                points += amount
                if task_id:
                    completed.add(task_id)

            available = set(record.available_unlocks)
            newly_unlocked: list[str] = []
            for module, threshold in sorted(self.thresholds.items(), key=lambda item: (item[1], item[0])):
                if points >= threshold and module not in record.unlocked_modules and module not in available:
                    available.add(module)
                    newly_unlocked.append(module)

            saved = self._write(
                replace(
                    record,
                    points=points,
                    available_unlocks=frozenset(available),
                    tasks_completed=frozenset(completed),
                )
            )
        logger.info("progress.award amount={} total={} unlocked={}", amount, saved.points, newly_unlocked)
        return AwardResult(new_total=saved.points, newly_unlocked=newly_unlocked)

    def unlock_module(self, name: str) -> ProgressRecord:
        """Move ``name`` into the unlocked set without re-checking thresholds."""
        with self._lock:
            stored = self._read()
            record = stored or self.default_record()
            if stored is not None and name in record.unlocked_modules and name not in record.available_unlocks:
                return record
            saved = self._write(
                replace(
                    record,
                    unlocked_modules=record.unlocked_modules | {name},
                    available_unlocks=record.available_unlocks - {name},
                )
            )
        logger.info("progress.unlock module={}", name)
        return saved

    def reset_progress(self) -> ProgressRecord:
        with self._lock:
            record = self._write(self.default_record())
        logger.info("progress.reset key={}", self.key)
        return record

    def get_next_unlock_progress(self) -> UnlockProgress | None:
        """Progress toward the cheapest module whose threshold is still above the current points.

        A module whose threshold is already met but which no award has moved into
        ``available_unlocks`` yet is skipped; the next ``award_points`` call picks it up.
        """
        record = self.load_progress()
        pending = [
            (threshold, module)
            for module, threshold in self.thresholds.items()
            if threshold > record.points
            and module not in record.unlocked_modules
            and module not in record.available_unlocks
        ]
        if not pending:
            return None
        threshold, module = min(pending)
        return UnlockProgress(
            module_name=module,
            required_points=threshold,
            current_points=record.points,
            fraction=record.points / threshold,
        )

    def _current(self) -> ProgressRecord:
        return self._read() or self.default_record()

    def _read(self) -> ProgressRecord | None:
        try:
            raw = self.storage.get(self.key)
        except Exception as exc:
            raise PersistenceError(f"failed to read progress: {exc}") from exc
        if raw is None:
            return None
        try:
            payload: Any = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"progress record is not valid JSON: {exc}") from exc
        record = ProgressRecord.from_payload(payload)
        if record is None:
            raise PersistenceError("progress record has an unexpected shape")
        return record

    def _write(self, record: ProgressRecord) -> ProgressRecord:
        stamped = replace(record, last_updated=self._clock())
        data = json.dumps(stamped.to_payload(), ensure_ascii=False).encode("utf-8")
        try:
            self.storage.set(self.key, data)
        except Exception as exc:
            raise PersistenceError(f"failed to save progress: {exc}") from exc
        return stamped
