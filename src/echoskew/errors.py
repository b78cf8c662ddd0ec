"""Error types shared by the echo server and the measurement clients."""

from __future__ import annotations

from typing import Optional


class ProbeError(Exception):
    """Base class for every echoskew error."""


class WireError(ProbeError):
    """A line on the wire could not be decoded."""


class ConnectError(ProbeError):
    """The channel to the responder could not be established."""

    def __init__(self, host: str, port: int, cause: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(f"cannot connect to {host}:{port}: {cause}")


class CallError(ProbeError):
    """A single request/response exchange failed.

    ``call`` names the exchange (``warmup``, ``ping1``, ``ping2``, ``health``)
    and ``iteration`` the loop iteration it belonged to (0 for the warm-up).
    Both are filled in by the measurement loop; the channel only knows the
    cause.
    """

    def __init__(self, message: str, call: str = "", iteration: int = 0,
                 cause: Optional[BaseException] = None):
        self.message = message
        self.call = call
        self.iteration = iteration
        self.cause = cause
        super().__init__(message)

    def with_context(self, call: str, iteration: int) -> "CallError":
        self.call = call
        self.iteration = iteration
        return self

    def __str__(self) -> str:
        if self.call:
            return f"{self.call} (iteration {self.iteration}): {self.message}"
        return self.message


class RemoteError(CallError):
    """The server answered the request with an ``error`` response."""


class UnknownServiceError(ProbeError):
    """Health check asked about a service the server does not know."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"NOT_FOUND: unknown service {service!r}")


class LineTooLongError(WireError):
    """A line on the wire is longer than the stream limit."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"line exceeds {limit} bytes")
