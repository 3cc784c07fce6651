"""Session table mapping opaque connection ids to their ledgers and sockets."""

import itertools
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from price_tracker.core.ledger import PriceLedger
from price_tracker.core.protocol import FrameAssembler
from price_tracker.core.time_utils import utc_now


@dataclass(slots=True, eq=False)
class Session:
    """Live state of one admitted connection."""

    session_id: int
    sock: socket.socket
    peer: Any
    ledger: PriceLedger = field(default_factory=PriceLedger)
    assembler: FrameAssembler = field(default_factory=FrameAssembler)
    outbound: bytearray = field(default_factory=bytearray)
    connected_at: datetime = field(default_factory=utc_now)
    frames_handled: int = 0


class SessionTable:
    """
    Owned mapping from session id to Session.

    Ids come from a monotonically increasing counter and are never reused, so a
    closed connection's id can not alias a newer one. The table is unbounded
    unless max_sessions is given.
    """

    def __init__(self, max_sessions: int | None = None) -> None:
        self.max_sessions = max_sessions
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def open(self, sock: socket.socket, peer: Any) -> Session | None:
        """Admit a connection; None means the caller must close it unadmitted."""

        if self.max_sessions is not None and len(self._sessions) >= self.max_sessions:
            return None

        try:
            session = Session(session_id=next(self._ids), sock=sock, peer=peer)
            self._sessions[session.session_id] = session
        except MemoryError:
            return None
        return session

    def get(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def close(self, session_id: int) -> Session | None:
        """Remove a session and release its ledger; returns None if already gone."""

        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.ledger.clear()
        session.assembler.clear()
        session.outbound.clear()
        return session

    def ids(self) -> list[int]:
        return sorted(self._sessions)

    def drain(self) -> list[Session]:
        """Remove and return every session in ascending id order."""

        return [session for session in map(self.close, self.ids()) if session is not None]
