"""Task envelope wire codec."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from zelara.errors import ProtocolError


class TaskKind(StrEnum):
    IMAGE_VALIDATION = "image_validation"
    IMAGE_INVERSION_TEST = "image_inversion_test"
    COUNTER_UPDATE = "counter_update"


def _now() -> datetime:
    return datetime.now(UTC)


def _format_timestamp(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class TaskRequest:
    """One task envelope sent to the Desktop."""

    task_id: str
    kind: TaskKind
    payload: Mapping[str, Any]
    issued_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class TaskResponse:
    """One response envelope received from the Desktop."""

    task_id: str
    ok: bool
    result: Any = None
    completed_at: datetime | None = None

    @property
    def error_message(self) -> str | None:
        if isinstance(self.result, Mapping):
            error = self.result.get("error")
            if isinstance(error, str) and error:
                return error
        return None


def _load_object(frame: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(frame)
    except (ValueError, RecursionError) as exc:
        # ValueError covers bad JSON, bad UTF-8 and oversized integer literals.
        raise ProtocolError(f"unparseable frame: {type(exc).__name__}: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"frame is not a JSON object: {type(data).__name__}")
    task_id = data.get("taskId")
    if not isinstance(task_id, str) or not task_id:
        raise ProtocolError("frame has no taskId")
    return data


def encode_request(request: TaskRequest) -> str:
    return json.dumps(
        {
            "taskId": request.task_id,
            "taskType": str(request.kind),
            "payload": dict(request.payload),
            "timestamp": _format_timestamp(request.issued_at),
        },
        ensure_ascii=False,
    )


def decode_request(frame: str | bytes) -> TaskRequest:
    data = _load_object(frame)
    try:
        kind = TaskKind(data.get("taskType"))
    except ValueError as exc:
        raise ProtocolError(f"unknown taskType: {data.get('taskType')!r}") from exc
    payload = data.get("payload")
    if not isinstance(payload, dict):
        raise ProtocolError("request payload is not an object")
    issued_at = _parse_timestamp(data.get("timestamp")) or _now()
    return TaskRequest(task_id=data["taskId"], kind=kind, payload=payload, issued_at=issued_at)


def encode_response(response: TaskResponse) -> str:
    return json.dumps(
        {
            "taskId": response.task_id,
            "success": response.ok,
            "result": response.result,
            "timestamp": _format_timestamp(response.completed_at or _now()),
        },
        ensure_ascii=False,
    )


def decode_response(frame: str | bytes) -> TaskResponse:
    """Decode one inbound frame, raising ``ProtocolError`` if it cannot be correlated."""
    data = _load_object(frame)
    success = data.get("success")
    if not isinstance(success, bool):
        raise ProtocolError(f"response {data['taskId']} has no boolean success flag")
    return TaskResponse(
        task_id=data["taskId"],
        ok=success,
        result=data.get("result"),
        completed_at=_parse_timestamp(data.get("timestamp")),
    )
