from enum import Enum
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from echoskew.transport.address import DEFAULT_PORT


class Mode(str, Enum):
    SERVE = "serve"
    PING = "ping"
    HEALTH = "health"


class Settings(BaseSettings):
    """Run configuration with environment variable support (ECHOSKEW_*)"""

    MODE: Mode = Mode.PING

    # Target for the ping and health clients
    HOST: str = "127.0.0.1"
    PORT: int = DEFAULT_PORT

    # Listen address for the server, "port" or "host:port"
    LISTEN: str = f":{DEFAULT_PORT}"

    # Measurement settings
    COUNT: int = 1
    PAYLOAD: str = ""
    HEALTH_SERVICE: str = ""
    PERCENTILES: List[float] = [50.0]
    CONNECT_TIMEOUT: float = 5.0

    # TLS
    TLS: bool = False
    CERT_FILE: Optional[str] = None
    KEY_FILE: Optional[str] = None
    CA_FILE: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_PATH: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="ECHOSKEW_", env_file=".env", case_sensitive=True)

    @field_validator("COUNT")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return v if v > 0 else 1

    @field_validator("PERCENTILES")
    @classmethod
    def _valid_percentiles(cls, v: List[float]) -> List[float]:
        for p in v:
            if not 0 <= p <= 100:
                raise ValueError(f"percentile {p} outside [0, 100]")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level
