"""Single-connection manager with ordered candidate failover."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from blinker import Signal
from loguru import logger

from zelara.errors import LinkConnectionError, NotConnectedError, ProtocolError, SendError
from zelara.link.codec import decode_response
from zelara.link.pending import PendingRequestTable
from zelara.link.transport import Transport, TransportFactory, open_websocket


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class Candidate:
    """One address/port pair tried during connection establishment."""

    address: str
    port: int

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "Connection timeout"
    if isinstance(exc, ConnectionRefusedError):
        return "Connection refused"
    return str(exc) or type(exc).__name__


class ConnectionManager:
    """Own at most one live transport and route its frames to the pending table."""

    def __init__(
        self,
        table: PendingRequestTable,
        *,
        transport_factory: TransportFactory = open_websocket,
        attempt_timeout: float = 3.0,
    ) -> None:
        self.table = table
        self.attempt_timeout = attempt_timeout
        self.state_changed = Signal("zelara.link.state_changed")
        self._factory = transport_factory
        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        self._reader: asyncio.Task[None] | None = None
        self._token: str | None = None
        self._candidate: Candidate | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._transport is not None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def candidate(self) -> Candidate | None:
        return self._candidate

    async def connect(self, addresses: Sequence[str], port: int, token: str) -> Candidate:
        """Try each address in order and bind to the first that opens."""
        candidates = [Candidate(address, port) for address in addresses]
        if not candidates:
            raise ValueError("at least one candidate address is required")

        async with self._lock:
            if self._transport is not None:
                await self._close_locked()
            self._set_state(ConnectionState.CONNECTING)
            attempts: list[tuple[Candidate, str]] = []
            try:
                for candidate in candidates:
                    transport = await self._attempt(candidate, attempts)
                    if transport is None:
                        continue
                    self._transport = transport
                    self._token = token
                    self._candidate = candidate
                    self._set_state(ConnectionState.CONNECTED)
                    self._reader = asyncio.create_task(self._listen(transport))
                    logger.info("link.connected candidate={}", candidate)
                    return candidate
            finally:
                if self._state is ConnectionState.CONNECTING:
                    self._set_state(ConnectionState.DISCONNECTED)

        logger.error("link.connect.failed tried={}", len(attempts))
        raise LinkConnectionError(attempts)

    async def _attempt(self, candidate: Candidate, attempts: list[tuple[Candidate, str]]) -> Transport | None:
        logger.info("link.connect.attempt candidate={} timeout={}", candidate, self.attempt_timeout)
        try:
            return await asyncio.wait_for(
                self._factory(candidate.address, candidate.port),
                timeout=self.attempt_timeout,
            )
        except Exception as exc:
            reason = _describe(exc)
            logger.warning("link.connect.attempt.failed candidate={} reason={}", candidate, reason)
            attempts.append((candidate, reason))
            return None

    async def disconnect(self) -> None:
        async with self._lock:
            await self._close_locked()

    async def send(self, frame: str | Callable[[str], str]) -> None:
        """Write one frame; a callable is given the bound token once the lock is held."""
        async with self._lock:
            transport, token = self._transport, self._token
            if transport is None or token is None or self._state is not ConnectionState.CONNECTED:
                raise NotConnectedError("Not connected to Desktop")
            if callable(frame):
                frame = frame(token)
            try:
                await transport.send(frame)
            except Exception as exc:
                raise SendError(_describe(exc)) from exc

    async def _close_locked(self) -> None:
        transport, reader = self._transport, self._reader
        if transport is None:
            return
        self._clear()
        logger.info("link.disconnect")
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await self._close_transport(transport)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as exc:
            logger.warning("link.close.error error={}", exc)

    async def _listen(self, transport: Transport) -> None:
        try:
            async for frame in transport:
                self._dispatch(frame)
        except Exception as exc:
            logger.warning("link.transport.error error={}", exc)
            if self._transport is transport:
                self._clear()
            await self._close_transport(transport)
            return
        if self._transport is transport:
            logger.info("link.disconnected candidate={}", self._candidate)
            self._clear()

    def _dispatch(self, frame: str | bytes) -> None:
        try:
            response = decode_response(frame)
        except ProtocolError as exc:
            logger.warning("link.frame.dropped error={}", exc)
            return
        if not self.table.resolve(response.task_id, response):
            logger.debug("link.frame.uncorrelated task_id={}", response.task_id)

    def _clear(self) -> None:
        self._transport = None
        self._reader = None
        self._token = None
        self._candidate = None
        self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        self.state_changed.send(self, state=state)
