"""Device link exports."""

from zelara.link.client import DeviceLinkingClient, TaskIdFactory
from zelara.link.codec import TaskKind, TaskRequest, TaskResponse, decode_response, encode_request
from zelara.link.connection import Candidate, ConnectionManager, ConnectionState
from zelara.link.pending import LoopScheduler, PendingRequestTable, Scheduler
from zelara.link.transport import Transport, TransportFactory, open_websocket

__all__ = [
    "Candidate",
    "ConnectionManager",
    "ConnectionState",
    "DeviceLinkingClient",
    "LoopScheduler",
    "PendingRequestTable",
    "Scheduler",
    "TaskIdFactory",
    "TaskKind",
    "TaskRequest",
    "TaskResponse",
    "Transport",
    "TransportFactory",
    "decode_response",
    "encode_request",
    "open_websocket",
]
