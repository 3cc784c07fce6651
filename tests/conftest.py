"""Shared fixtures running a live price server on an ephemeral loopback port."""

import threading
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from price_tracker.services.server.main import PriceServer

_JOIN_TIMEOUT_S = 5.0


@pytest.fixture
def start_server() -> Iterator[Callable[..., PriceServer]]:
    running: list[tuple[PriceServer, threading.Thread]] = []

    def _start(**kwargs: Any) -> PriceServer:
        server = PriceServer("127.0.0.1", 0, **kwargs)
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        running.append((server, thread))
        return server

    yield _start

    for server, thread in running:
        server.stop()
        thread.join(timeout=_JOIN_TIMEOUT_S)
