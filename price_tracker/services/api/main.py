"""FastAPI service exposing health and version endpoints for the price tracker."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from price_tracker.core.config import get_settings
from price_tracker.core.logging import configure_logging
from price_tracker.core.types import ServiceMeta
from price_tracker.services.client.main import PriceClient

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

_PROBE_MIN_TIME = 0
_PROBE_MAX_TIME = 0


def _service_meta() -> ServiceMeta:
    return ServiceMeta(name=settings.APP_NAME, version=settings.VERSION, env=settings.ENV)


def probe_price_server(host: str, port: int, timeout: float) -> bool:
    """Return True when a fresh connection answers a query with a well-formed response."""

    try:
        with PriceClient(host, port, timeout=timeout) as client:
            client.query(_PROBE_MIN_TIME, _PROBE_MAX_TIME)
    except OSError as exc:
        logger.warning(
            "api_probe_failed",
            extra={"host": host, "port": port, "error": str(exc)},
        )
        return False
    return True


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Log startup metadata for operational visibility."""

    meta = _service_meta()
    logger.info(
        "api_startup",
        extra={"service": "api", "env": meta.env, "version": meta.version},
    )
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)


@app.get("/health")
def health() -> JSONResponse:
    """Report ok only when the TCP price server answers a probe query."""

    if probe_price_server(settings.PROBE_HOST, settings.PORT, settings.PROBE_TIMEOUT_S):
        return JSONResponse({"status": "ok"})
    return JSONResponse({"status": "unavailable"}, status_code=503)


@app.get("/version")
def version() -> dict[str, str]:
    """Return application metadata from shared settings."""

    meta = _service_meta()
    return {"name": meta.name, "version": meta.version, "env": meta.env}
