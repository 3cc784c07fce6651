"""Environment-driven settings shared by the server, client and API processes."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_PORT = 1024
MAX_PORT = 65535

FRAMING_BUFFERED = "buffered"
FRAMING_STRICT = "strict"
_FRAMING_MODES = (FRAMING_BUFFERED, FRAMING_STRICT)


def validate_port(value: int | str) -> int:
    """Return the port as an int, rejecting non-numeric or reserved values."""

    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            raise ValueError(f"port must be numeric, got {value!r}")
        value = int(text)

    if isinstance(value, bool) or not MIN_PORT <= value <= MAX_PORT:
        raise ValueError(f"valid port range {MIN_PORT} - {MAX_PORT}, got {value!r}")
    return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "Price Tracker"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 9000
    LISTEN_BACKLOG: int = 10
    MAX_SESSIONS: int = 0
    FRAMING_MODE: str = FRAMING_BUFFERED
    RECV_SIZE: int = 4096
    OUTBOUND_LIMIT: int = 65536
    PROBE_HOST: str = "127.0.0.1"
    PROBE_TIMEOUT_S: float = 1.0
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("PORT")
    @classmethod
    def _check_port(cls, value: int) -> int:
        return validate_port(value)

    def framing_mode(self) -> str:
        """Return the normalized framing mode, falling back to buffered framing."""

        mode = self.FRAMING_MODE.strip().lower()
        if mode in _FRAMING_MODES:
            return mode
        return FRAMING_BUFFERED

    def max_sessions(self) -> int | None:
        """Return the admission ceiling, or None when admission is unbounded."""

        if self.MAX_SESSIONS <= 0:
            return None
        return self.MAX_SESSIONS


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
