"""Client side of the JSONL RPC transport.

Unlike a one-shot RPC client, a channel keeps a single TCP connection open for
the whole measurement run so that connection setup never shows up in the
timed calls.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Optional

from echoskew.errors import CallError, ConnectError, LineTooLongError, RemoteError, WireError
from echoskew.wire import message as wire

logger = logging.getLogger(__name__)


class RpcChannel:
    """Request/response channel to one echoskew server.

    Calls are strictly sequential; the channel is owned by a single run.
    """

    def __init__(self, host: str, port: int, ssl_context: Optional[ssl.SSLContext] = None,
                 connect_timeout: Optional[float] = 5.0, limit: int = wire.MAX_LINE_BYTES):
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.connect_timeout = connect_timeout
        self.limit = limit
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._next_id = 0

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def connect(self) -> "RpcChannel":
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, ssl=self.ssl_context, limit=self.limit),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError, ssl.SSLError) as e:
            logger.error(f"Connection to {self.host}:{self.port} failed: {e}")
            raise ConnectError(self.host, self.port, e) from e
        logger.debug(f"Connected to {self.host}:{self.port}")
        return self

    async def close(self) -> None:
        if self._writer is None:
            return
        writer = self._writer
        self._reader = self._writer = None
        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def __aenter__(self) -> "RpcChannel":
        if not self.connected:
            await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def call(self, msg: wire.PingMessage) -> wire.PingMessage:
        """Send a ping and return the responder's answer."""
        response = await self._roundtrip(lambda msg_id: wire.ping_request(msg, msg_id), wire.PONG)
        return wire.PingMessage.from_dict(response.payload)

    async def check_health(self, service: str = "") -> str:
        """Ask the server for the serving status of ``service``."""
        response = await self._roundtrip(lambda msg_id: wire.health_request(service, msg_id),
                                         wire.HEALTH_CHECK_RESPONSE)
        return str(response.payload.get("status", wire.UNKNOWN))

    async def _roundtrip(self, build, expected_method: str) -> wire.RpcMessage:
        if self._reader is None or self._writer is None:
            raise CallError("channel is not connected")
        self._next_id += 1
        msg_id = self._next_id
        request = build(msg_id)
        try:
            self._writer.write(request.encode())
            await self._writer.drain()
            line = await wire.read_line(self._reader, self.limit)
        except OSError as e:
            raise CallError(f"transport error: {e}", cause=e) from e
        except LineTooLongError as e:
            raise CallError(f"response {e}", cause=e) from e
        if not line:
            raise CallError("connection closed by server")
        try:
            response = wire.decode_line(line)
        except WireError as e:
            raise CallError(str(e), cause=e) from e
        logger.debug(f"RPC call {request.method} -> {response.method}")
        if response.is_error:
            raise RemoteError(response.error or "unknown server error")
        if response.id != msg_id:
            raise CallError(f"response id {response.id} does not match request id {msg_id}")
        if response.method != expected_method:
            raise CallError(f"unexpected response method {response.method!r}")
        return response
