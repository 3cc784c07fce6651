"""Session table admission, teardown and isolation."""

import socket
from collections.abc import Iterator

import pytest

from price_tracker.core.sessions import SessionTable

PEER = ("127.0.0.1", 50000)


@pytest.fixture
def sockets() -> Iterator[list[socket.socket]]:
    opened: list[socket.socket] = []
    for _ in range(3):
        opened.extend(socket.socketpair())
    yield opened
    for sock in opened:
        sock.close()


def test_ids_increase_and_are_not_reused(sockets: list[socket.socket]) -> None:
    """Closed ids are never handed out again."""

    table = SessionTable()
    first = table.open(sockets[0], PEER)
    second = table.open(sockets[1], PEER)
    assert first is not None and second is not None
    assert second.session_id > first.session_id

    table.close(first.session_id)
    third = table.open(sockets[2], PEER)
    assert third is not None
    assert third.session_id not in (first.session_id, second.session_id)
    assert table.ids() == [second.session_id, third.session_id]


def test_admission_ceiling_rejects(sockets: list[socket.socket]) -> None:
    """A full table refuses new sessions until one closes."""

    table = SessionTable(max_sessions=1)
    first = table.open(sockets[0], PEER)
    assert first is not None
    assert table.open(sockets[1], PEER) is None
    assert len(table) == 1

    table.close(first.session_id)
    assert table.open(sockets[1], PEER) is not None


def test_close_is_idempotent_and_releases_ledger(sockets: list[socket.socket]) -> None:
    """Closing removes the session once and empties its ledger."""

    table = SessionTable()
    session = table.open(sockets[0], PEER)
    assert session is not None
    session.ledger.insert(1, 100)

    closed = table.close(session.session_id)
    assert closed is session
    assert len(session.ledger) == 0
    assert session.session_id not in table
    assert table.close(session.session_id) is None
    assert table.get(session.session_id) is None


def test_sessions_do_not_share_ledgers(sockets: list[socket.socket]) -> None:
    """One session's inserts are invisible to another."""

    table = SessionTable()
    a = table.open(sockets[0], PEER)
    b = table.open(sockets[1], PEER)
    assert a is not None and b is not None

    b.ledger.insert(500, 10)
    b.ledger.insert(600, 20)
    a.ledger.insert(100, 7)

    assert a.ledger.query_average(400, 700) == 0
    assert b.ledger.query_average(0, 200) == 0
    assert b.ledger.query_average(400, 700) == 15


def test_drain_removes_everything(sockets: list[socket.socket]) -> None:
    """drain() empties the table in ascending id order."""

    table = SessionTable()
    opened = [table.open(sock, PEER) for sock in sockets[:3]]

    drained = table.drain()
    assert [session.session_id for session in drained] == [s.session_id for s in opened if s]
    assert len(table) == 0
