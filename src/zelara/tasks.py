"""Recycling task flow: validate a photo on the Desktop, then credit points."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from loguru import logger

from zelara.link.client import DeviceLinkingClient
from zelara.progress.store import AwardResult, ProgressStore

RECYCLING_TASK_POINTS = 10


@dataclass(frozen=True)
class RecyclingOutcome:
    task_id: str
    validation: Any
    award: AwardResult


async def run_recycling_task(
    client: DeviceLinkingClient,
    store: ProgressStore,
    image_b64: str,
    *,
    task_id: str | None = None,
    points: int = RECYCLING_TASK_POINTS,
) -> RecyclingOutcome:
    """Validate ``image_b64`` and award ``points`` once per ``task_id``.

    Link errors propagate before anything is credited. Reuse the same
    ``task_id`` when retrying one physical task.
    """
    task_id = task_id or f"recycling_{uuid.uuid4().hex}"
    validation = await client.send_image_validation(image_b64)
    award = store.award_points(points, task_id)
    logger.info("recycling.done task_id={} total={}", task_id, award.new_total)
    return RecyclingOutcome(task_id=task_id, validation=validation, award=award)
