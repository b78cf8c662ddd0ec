"""RPC server exposing the echo responder and the health responder.

Simple TCP/JSONL protocol: a client opens one connection and sends any number
of request lines; each one gets exactly one response line, in order.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Optional

from echoskew.errors import LineTooLongError, ProbeError, UnknownServiceError, WireError
from echoskew.server.health import PING_SERVICE, HealthResponder
from echoskew.server.responder import EchoResponder
from echoskew.version import short as version_short
from echoskew.wire import message as wire

logger = logging.getLogger(__name__)


class RpcServer:
    """RPC server answering ping and health_check requests."""

    def __init__(self, host: str, port: int,
                 responder: Optional[EchoResponder] = None,
                 health: Optional[HealthResponder] = None,
                 ssl_context: Optional[ssl.SSLContext] = None,
                 limit: int = wire.MAX_LINE_BYTES):
        self.host = host
        self.port = port
        self.responder = responder or EchoResponder()
        self.health = health or HealthResponder()
        self.ssl_context = ssl_context
        self.limit = limit
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None or not self._server.sockets:
            return self.port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start listening and mark the ping service as serving."""
        self._server = await asyncio.start_server(
            self._handle_client, self.host, self.port, ssl=self.ssl_context, limit=self.limit
        )
        self.health.set_serving_status(PING_SERVICE, wire.SERVING)
        logger.info(f"echoskew {version_short()} ping server listening on port {self.host}:{self.bound_port}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop the RPC server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("RPC server stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        logger.debug(f"Connection from {peer}")
        try:
            while True:
                try:
                    data = await wire.read_line(reader, self.limit)
                except LineTooLongError as e:
                    logger.warning(f"Request from {peer} rejected: {e}")
                    response = wire.error_response(0, str(e))
                else:
                    if not data:
                        break
                    if not data.strip():
                        continue
                    response = self.process_line(data)
                writer.write(response.encode())
                await writer.drain()
        except OSError as e:
            logger.debug(f"Connection from {peer} dropped: {e}")
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    def process_line(self, data: bytes) -> wire.RpcMessage:
        """Decode one request line and build its response."""
        try:
            request = wire.decode_line(data)
        except WireError as e:
            logger.warning(f"Bad request line: {e}")
            return wire.error_response(0, str(e))
        try:
            return self.process_request(request)
        except ProbeError as e:
            return wire.error_response(request.id, str(e))

    def process_request(self, request: wire.RpcMessage) -> wire.RpcMessage:
        if request.method == wire.PING:
            ping = wire.PingMessage.from_dict(request.payload)
            out = self.responder.respond(ping)
            return wire.RpcMessage(method=wire.PONG, id=request.id, payload=out.to_dict())
        elif request.method == wire.HEALTH_CHECK:
            service = str(request.payload.get("service", "") or "")
            try:
                status = self.health.check(service)
            except UnknownServiceError as e:
                logger.info(f"Health check for unknown service {service!r}")
                return wire.error_response(request.id, str(e))
            return wire.RpcMessage(method=wire.HEALTH_CHECK_RESPONSE, id=request.id,
                                   payload={"status": status})
        else:
            return wire.error_response(request.id, f"Unknown method: {request.method}")
