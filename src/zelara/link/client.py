"""Device linking client: typed task round trips over one connection."""

from __future__ import annotations

import itertools
import secrets
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from loguru import logger

from zelara.config import Settings, load_settings
from zelara.errors import NotConnectedError, ProtocolError
from zelara.link.codec import TaskKind, TaskRequest, encode_request
from zelara.link.connection import Candidate, ConnectionManager, ConnectionState
from zelara.link.pending import PendingRequestTable, Scheduler
from zelara.link.transport import TransportFactory, open_websocket
from zelara.pairing import PairingInfo


class TaskIdFactory:
    """Produce ``task_<epoch ms>_<seq>_<random>`` ids, unique per factory."""

    def __init__(self) -> None:
        self._seq = itertools.count(1)

    def __call__(self) -> str:
        return f"task_{int(time.time() * 1000)}_{next(self._seq)}_{secrets.token_hex(3)}"


class DeviceLinkingClient:
    """Public facade over the connection manager and the pending-request table."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport_factory: TransportFactory = open_websocket,
        scheduler: Scheduler | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.table = PendingRequestTable(scheduler)
        self.connection = ConnectionManager(
            self.table,
            transport_factory=transport_factory,
            attempt_timeout=self.settings.connect_attempt_timeout,
        )
        self._new_task_id = id_factory or TaskIdFactory()

    async def __aenter__(self) -> DeviceLinkingClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def connect(self, addresses: str | Sequence[str], port: int, token: str) -> Candidate:
        if isinstance(addresses, str):
            addresses = [addresses]
        return await self.connection.connect(addresses, port, token)

    async def connect_pairing(self, pairing: PairingInfo) -> Candidate:
        return await self.connection.connect(pairing.addresses, pairing.port, pairing.token)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def send_image_validation(self, image_b64: str) -> Any:
        """Ask the Desktop to validate a base64 image; returns its result object."""
        return await self._round_trip(
            TaskKind.IMAGE_VALIDATION,
            {"imageData": image_b64},
            timeout=self.settings.validation_timeout,
            fallback_error="Validation failed",
        )

    async def send_image_inversion_test(self, image_b64: str) -> Any:
        return await self._round_trip(
            TaskKind.IMAGE_INVERSION_TEST,
            {"imageData": image_b64},
            timeout=self.settings.inversion_timeout,
            fallback_error="Inversion failed",
        )

    async def send_counter_update(self, value: int) -> Any:
        return await self._round_trip(
            TaskKind.COUNTER_UPDATE,
            {"value": value},
            timeout=self.settings.counter_timeout,
            fallback_error="Counter update failed",
        )

    async def _round_trip(
        self,
        kind: TaskKind,
        payload: Mapping[str, Any],
        *,
        timeout: float,
        fallback_error: str,
    ) -> Any:
        if not self.connection.is_connected:
            raise NotConnectedError("Not connected to Desktop")

        task_id = self._new_task_id()

        def _frame(token: str) -> str:
            return encode_request(TaskRequest(task_id=task_id, kind=kind, payload={**payload, "token": token}))

        future = self.table.register(task_id, self.table.scheduler.time() + timeout)
        try:
            await self.connection.send(_frame)
        except BaseException:
            self.table.discard(task_id)
            raise
        logger.debug("link.task.sent task_id={} kind={} timeout={}", task_id, kind, timeout)

        response = await future
        if not response.ok:
            logger.warning("link.task.failed task_id={} kind={}", task_id, kind)
            raise ProtocolError(response.error_message or fallback_error)
        logger.debug("link.task.done task_id={} kind={}", task_id, kind)
        return response.result
