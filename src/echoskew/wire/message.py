"""Wire format for the echo protocol.

Messages travel as newline-delimited JSON objects over a TCP stream, one
request line answered by exactly one response line:

    {"method": "ping", "id": 3, "payload": {"payload": "hi", "seq": 1, "ts": 1700000000000000000}}
    {"method": "pong", "id": 3, "payload": {"payload": "hi", "seq": 1, "ts": 1700000000000123456}}

The ``ts`` field of a ping is written by whoever sent the line: the client
puts its send time in the request, the responder puts its own clock reading
in the response.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from echoskew.errors import LineTooLongError, WireError

PING = "ping"
PONG = "pong"
HEALTH_CHECK = "health_check"
HEALTH_CHECK_RESPONSE = "health_check_response"
ERROR = "error"

# Health statuses, same names as the standard gRPC health protocol.
UNKNOWN = "UNKNOWN"
SERVING = "SERVING"
NOT_SERVING = "NOT_SERVING"
SERVICE_UNKNOWN = "SERVICE_UNKNOWN"
HEALTH_STATUSES = (UNKNOWN, SERVING, NOT_SERVING, SERVICE_UNKNOWN)

# StreamReader limit for one line, the usual 4 MiB RPC message cap.
MAX_LINE_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True)
class PingMessage:
    """Ping request or response.

    ``timestamp`` is in nanoseconds; its meaning depends on direction
    (client send time in a request, responder clock in a response).
    """

    payload: str = ""
    sequence: int = 0
    timestamp: int = 0

    def with_fields(self, **changes: Any) -> "PingMessage":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {"payload": self.payload, "seq": self.sequence, "ts": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PingMessage":
        try:
            return cls(
                payload=str(data.get("payload", "") or ""),
                sequence=int(data.get("seq", 0) or 0),
                timestamp=int(data.get("ts", 0) or 0),
            )
        except (TypeError, ValueError) as e:
            raise WireError(f"bad ping message {data!r}: {e}") from e


@dataclass
class RpcMessage:
    """One JSONL line: a request or a response envelope."""

    method: str
    id: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"method": self.method, "id": self.id, "payload": self.payload}
        if self.error is not None:
            out["error"] = self.error
        return out

    def encode(self) -> bytes:
        return (json.dumps(self.to_dict(), separators=(",", ":")) + "\n").encode("utf-8")

    @property
    def is_error(self) -> bool:
        return self.method == ERROR


def decode_line(data: bytes) -> RpcMessage:
    """Decode a single JSONL line into an :class:`RpcMessage`."""
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WireError(f"malformed line: {e}") from e
    if not isinstance(obj, dict):
        raise WireError(f"expected a JSON object, got {type(obj).__name__}")
    method = obj.get("method")
    if not isinstance(method, str) or not method:
        raise WireError("missing method")
    payload = obj.get("payload") or {}
    if not isinstance(payload, dict):
        raise WireError("payload must be an object")
    try:
        msg_id = int(obj.get("id", 0) or 0)
    except (TypeError, ValueError) as e:
        raise WireError(f"bad id {obj.get('id')!r}") from e
    error = obj.get("error")
    return RpcMessage(method=method, id=msg_id, payload=payload,
                      error=str(error) if error is not None else None)


def ping_request(msg: PingMessage, msg_id: int) -> RpcMessage:
    return RpcMessage(method=PING, id=msg_id, payload=msg.to_dict())


def health_request(service: str, msg_id: int) -> RpcMessage:
    return RpcMessage(method=HEALTH_CHECK, id=msg_id, payload={"service": service})


def error_response(msg_id: int, error: str) -> RpcMessage:
    return RpcMessage(method=ERROR, id=msg_id, error=error)


async def read_line(reader: asyncio.StreamReader, limit: int = MAX_LINE_BYTES) -> bytes:
    """Read one line, ``b""`` at end of stream.

    A line longer than the reader's ``limit`` is dropped up to and including
    its newline and reported as :class:`LineTooLongError`, so the next read
    starts at the following line.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        consumed = e.consumed
    while True:
        await reader.readexactly(consumed)
        try:
            await reader.readuntil(b"\n")
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed
            continue
        except asyncio.IncompleteReadError:
            pass
        raise LineTooLongError(limit)
