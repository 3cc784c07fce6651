"""Blocking price tracker client plus a scripted smoke run against a live server."""

import argparse
import logging
import socket
from collections.abc import Sequence
from types import TracebackType

from pydantic import ValidationError

from price_tracker.core.config import get_settings, validate_port
from price_tracker.core.logging import configure_logging
from price_tracker.core.protocol import (
    RESPONSE_SIZE,
    decode_response,
    encode_insert,
    encode_query,
)

_DEFAULT_TIMEOUT_S = 5.0
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class PriceClient:
    """One client connection; every instance owns an isolated ledger on the server."""

    def __init__(self, host: str, port: int, timeout: float | None = _DEFAULT_TIMEOUT_S) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._sock: socket.socket | None = None

    def __enter__(self) -> "PriceClient":
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def connect(self) -> None:
        self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)

    def insert(self, timestamp: int, price: int) -> None:
        self._send(encode_insert(timestamp, price))

    def query(self, min_time: int, max_time: int) -> int:
        """Send a query and block until the 4-byte average arrives."""

        self._send(encode_query(min_time, max_time))
        return decode_response(self._recv_exact(RESPONSE_SIZE))

    def send_raw(self, data: bytes) -> None:
        """Write arbitrary bytes, e.g. a frame split across several sends."""

        self._send(data)

    def close(self) -> None:
        if self._sock is None:
            return
        self._sock.close()
        self._sock = None

    def _send(self, data: bytes) -> None:
        if self._sock is None:
            raise RuntimeError("price client is not connected")
        self._sock.sendall(data)

    def _recv_exact(self, size: int) -> bytes:
        if self._sock is None:
            raise RuntimeError("price client is not connected")
        chunks = bytearray()
        while len(chunks) < size:
            chunk = self._sock.recv(size - len(chunks))
            if not chunk:
                raise ConnectionError("server closed the connection mid-response")
            chunks.extend(chunk)
        return bytes(chunks)


def _smoke_scenarios() -> list[tuple[str, list[tuple[int, int]], list[tuple[int, int]]]]:
    bulk = [(50000 + i, 100 + (i % 50)) for i in range(200)]
    return [
        (
            "basic",
            [(12345, 101), (12346, 102), (12347, 100), (40960, 5)],
            [(12288, 16384), (40000, 50000), (10000, 12000), (16384, 12288)],
        ),
        (
            "extreme_values",
            [(0, 1), (_INT32_MAX, 999), (_INT32_MIN, -500), (-1, 0)],
            [(_INT32_MIN, _INT32_MAX), (0, 0), (-1, -1)],
        ),
        ("duplicate_timestamps", [(1000, 50), (1000, 60), (1000, 70)], [(1000, 1000)]),
        ("bulk", bulk, [(50000, 50099), (50100, 50199), (50050, 50149)]),
        (
            "out_of_order",
            [(30000, 300), (20000, 200), (25000, 250), (35000, 350), (22000, 220)],
            [(19000, 36000), (21000, 26000)],
        ),
        (
            "boundaries",
            [(60000, 600), (60001, 601), (60002, 602)],
            [(60000, 60000), (60000, 60001), (59999, 60003), (60003, 60010)],
        ),
        (
            "negative_prices",
            [(70000, 0), (70001, -100), (70002, -200), (70003, 100)],
            [(70000, 70003), (70000, 70002)],
        ),
    ]


def run_smoke(client: PriceClient, logger: logging.Logger) -> dict[str, list[int]]:
    """Replay the standard insert/query scenarios on one connection and return the answers."""

    results: dict[str, list[int]] = {}
    for name, inserts, queries in _smoke_scenarios():
        for timestamp, price in inserts:
            client.insert(timestamp, price)

        answers: list[int] = []
        for min_time, max_time in queries:
            average = client.query(min_time, max_time)
            answers.append(average)
            logger.info(
                "client_query_result",
                extra={"scenario": name, "min_time": min_time, "max_time": max_time, "average": average},
            )
        results[name] = answers
    return results


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the price tracker smoke scenarios")
    parser.add_argument("host", nargs="?", help="server address, defaults to PROBE_HOST")
    parser.add_argument("port", nargs="?", help="server port, defaults to PORT")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Connect to a running server and replay the smoke scenarios."""

    args = _parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        configure_logging()
        logging.getLogger(__name__).error("client_invalid_settings", extra={"error": str(exc)})
        return 1

    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    host = args.host or settings.PROBE_HOST
    try:
        port = validate_port(args.port) if args.port is not None else settings.PORT
    except ValueError as exc:
        logger.error("client_invalid_port", extra={"port": args.port, "error": str(exc)})
        return 1

    try:
        with PriceClient(host, port) as client:
            logger.info("client_connected", extra={"host": host, "port": port})
            results = run_smoke(client, logger)
    except OSError as exc:
        logger.error("client_connection_failed", extra={"host": host, "port": port, "error": str(exc)})
        return 1

    logger.info("client_completed", extra={"scenarios": len(results)})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
