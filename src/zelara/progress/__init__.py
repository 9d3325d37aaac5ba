"""Progress ledger exports."""

from zelara.progress.store import (
    DEFAULT_PROGRESS_KEY,
    DEFAULT_UNLOCK_THRESHOLDS,
    AwardResult,
    ProgressRecord,
    ProgressStore,
    UnlockProgress,
)

__all__ = [
    "DEFAULT_PROGRESS_KEY",
    "DEFAULT_UNLOCK_THRESHOLDS",
    "AwardResult",
    "ProgressRecord",
    "ProgressStore",
    "UnlockProgress",
]
