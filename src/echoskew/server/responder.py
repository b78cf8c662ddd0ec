"""Echo responder: returns each ping stamped with the server's clock."""

from __future__ import annotations

import time
from typing import Callable

from echoskew.utils.logging_config import get_logger
from echoskew.wire.message import PingMessage

logger = get_logger(__name__)

Clock = Callable[[], int]


class EchoResponder:
    """Stateless ping handler.

    The incoming ``timestamp`` is always replaced by ``clock()`` read when the
    request is handled; payload and sequence are copied through untouched.
    """

    def __init__(self, clock: Clock = time.time_ns):
        self.clock = clock

    def respond(self, request: PingMessage) -> PingMessage:
        logger.debug("Ping called", seq=request.sequence, ts=request.timestamp,
                     payload_len=len(request.payload))
        return request.with_fields(timestamp=self.clock())
