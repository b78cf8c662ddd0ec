"""Liveness status registry served next to the echo responder."""

from __future__ import annotations

from typing import Dict

from echoskew.errors import UnknownServiceError
from echoskew.wire.message import HEALTH_STATUSES, SERVING

# Name under which the echo service registers itself.
PING_SERVICE = "ping"


class HealthResponder:
    """Maps service names to serving statuses.

    The empty service name stands for the server as a whole.
    """

    def __init__(self):
        self._statuses: Dict[str, str] = {"": SERVING}

    def set_serving_status(self, service: str, status: str) -> None:
        if status not in HEALTH_STATUSES:
            raise ValueError(f"invalid health status {status!r}")
        self._statuses[service] = status

    def check(self, service: str) -> str:
        try:
            return self._statuses[service]
        except KeyError:
            raise UnknownServiceError(service) from None

    def services(self) -> Dict[str, str]:
        return dict(self._statuses)
