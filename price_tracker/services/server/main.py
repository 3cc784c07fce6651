"""Single-threaded TCP price tracker multiplexing every client connection over one selector."""

import argparse
import contextlib
import logging
import selectors
import signal
import socket
import threading
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from price_tracker.core.config import FRAMING_BUFFERED, FRAMING_STRICT, get_settings, validate_port
from price_tracker.core.logging import configure_logging
from price_tracker.core.protocol import (
    MSG_INSERT,
    MSG_QUERY,
    REQUEST_SIZE,
    RESPONSE_SIZE,
    decode_request,
    encode_response,
)
from price_tracker.core.sessions import Session, SessionTable
from price_tracker.core.types import Frame

_DEFAULT_RECV_SIZE = 4096
_DEFAULT_OUTBOUND_LIMIT = 65536
_WAKEUP_READ_SIZE = 64

_LISTENER = object()
_WAKEUP = object()


class ServerError(RuntimeError):
    """Unrecoverable listening socket failure."""


def _format_peer(peer: Any) -> str:
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


class PriceServer:
    """
    Readiness-driven price tracker server.

    One selector watches the listening socket, every admitted connection and a
    wake-up socket pair used by stop(). Each loop iteration either accepts one
    pending connection or services every ready connection in ascending session
    id order, so a session's ledger is only ever touched by the loop thread.

    All sockets are non-blocking. Query answers are queued on the session's
    outbound buffer and flushed when the socket is writable; a session whose
    backlog reaches outbound_limit is not read again until it drains.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        backlog: int = 10,
        max_sessions: int | None = None,
        framing_mode: str = FRAMING_BUFFERED,
        recv_size: int = _DEFAULT_RECV_SIZE,
        outbound_limit: int = _DEFAULT_OUTBOUND_LIMIT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.backlog = max(1, backlog)
        self.framing_mode = framing_mode
        self.recv_size = max(REQUEST_SIZE, recv_size)
        self.outbound_limit = max(RESPONSE_SIZE, outbound_limit)
        self.sessions = SessionTable(max_sessions=max_sessions)
        self.logger = logger or logging.getLogger(__name__)

        self._selector = selectors.DefaultSelector()
        self._shutdown_event = threading.Event()
        self._listener: socket.socket | None = None
        self._wakeup_reader: socket.socket | None = None
        self._wakeup_writer: socket.socket | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); resolves an ephemeral port once bind() has run."""

        if self._listener is None:
            return self.host, self.port
        host, port = self._listener.getsockname()[:2]
        return host, port

    @property
    def stopping(self) -> bool:
        return self._shutdown_event.is_set()

    def bind(self) -> None:
        """Create the listening socket and register it; failures raise ServerError."""

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.host, self.port))
            listener.listen(self.backlog)
            listener.setblocking(False)
        except OSError as exc:
            listener.close()
            raise ServerError(f"bind failed on {self.host}:{self.port}: {exc}") from exc

        self._wakeup_reader, self._wakeup_writer = socket.socketpair()
        self._wakeup_reader.setblocking(False)
        self._wakeup_writer.setblocking(False)

        self._listener = listener
        self._selector.register(listener, selectors.EVENT_READ, _LISTENER)
        self._selector.register(self._wakeup_reader, selectors.EVENT_READ, _WAKEUP)

    def stop(self) -> None:
        """Request shutdown; safe from signal handlers and other threads."""

        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()
        if self._wakeup_writer is not None:
            # A full wake-up buffer already guarantees a pending wake.
            with contextlib.suppress(BlockingIOError):
                self._wakeup_writer.send(b"\0")

    def serve_forever(self) -> None:
        """Run the readiness loop until stop() is called; accept failure raises ServerError."""

        if self._listener is None:
            self.bind()

        try:
            while not self._shutdown_event.is_set():
                self._run_once(self._selector.select())
        finally:
            self._close_all()

    def _run_once(self, events: list[tuple[selectors.SelectorKey, int]]) -> None:
        listener_ready = False
        ready: dict[int, int] = {}

        for key, mask in events:
            if key.data is _LISTENER:
                listener_ready = True
            elif key.data is _WAKEUP:
                self._drain_wakeup()
            else:
                ready[key.data] = ready.get(key.data, 0) | mask

        if listener_ready:
            self._accept()
            return

        for session_id in sorted(ready):
            session = self.sessions.get(session_id)
            if session is None:
                continue
            mask = ready[session_id]
            if mask & selectors.EVENT_WRITE and not self._flush(session):
                continue
            if mask & selectors.EVENT_READ and len(session.outbound) < self.outbound_limit:
                self._service(session)

    def _drain_wakeup(self) -> None:
        if self._wakeup_reader is None:
            return
        with contextlib.suppress(BlockingIOError):
            self._wakeup_reader.recv(_WAKEUP_READ_SIZE)

    def _accept(self) -> None:
        if self._listener is None:
            return
        try:
            conn, peer = self._listener.accept()
        except BlockingIOError:
            # Readiness went stale, e.g. the peer reset before accept().
            return
        except OSError as exc:
            raise ServerError(f"accept failed: {exc}") from exc

        conn.setblocking(False)
        session = self.sessions.open(conn, peer)
        if session is None:
            self.logger.warning(
                "server_session_rejected",
                extra={"peer": _format_peer(peer), "sessions": len(self.sessions)},
            )
            conn.close()
            return

        self._selector.register(conn, selectors.EVENT_READ, session.session_id)
        self.logger.info(
            "server_session_opened",
            extra={
                "session_id": session.session_id,
                "peer": _format_peer(peer),
                "sessions": len(self.sessions),
            },
        )

    def _service(self, session: Session) -> None:
        read_size = REQUEST_SIZE if self.framing_mode == FRAMING_STRICT else self.recv_size
        try:
            data = session.sock.recv(read_size)
        except BlockingIOError:
            return
        except OSError as exc:
            self._teardown(session, reason=str(exc))
            return

        if not data:
            self._teardown(session, reason="eof")
            return

        if self.framing_mode == FRAMING_STRICT:
            if len(data) != REQUEST_SIZE:
                self.logger.debug(
                    "server_partial_frame_dropped",
                    extra={"session_id": session.session_id, "size": len(data)},
                )
                return
            frames = [data]
        else:
            frames = session.assembler.feed(data)

        for raw in frames:
            self._handle_frame(session, decode_request(raw))

        if session.outbound:
            self._flush(session)

    def _handle_frame(self, session: Session, frame: Frame) -> None:
        session.frames_handled += 1

        if frame.kind == MSG_INSERT:
            if not session.ledger.insert(frame.first, frame.second):
                self.logger.warning(
                    "server_insert_dropped",
                    extra={"session_id": session.session_id, "timestamp": frame.first},
                )
        elif frame.kind == MSG_QUERY:
            average = session.ledger.query_average(frame.first, frame.second)
            session.outbound.extend(encode_response(average))
        else:
            self.logger.debug(
                "server_unknown_frame_kind",
                extra={"session_id": session.session_id, "kind": frame.kind.hex()},
            )

    def _flush(self, session: Session) -> bool:
        """Send as much queued output as the socket takes; False if the session was torn down."""

        try:
            sent = session.sock.send(session.outbound)
        except BlockingIOError:
            sent = 0
        except OSError as exc:
            self._teardown(session, reason=str(exc))
            return False

        del session.outbound[:sent]
        self._update_interest(session)
        return True

    def _update_interest(self, session: Session) -> None:
        events = 0
        if len(session.outbound) < self.outbound_limit:
            events |= selectors.EVENT_READ
        if session.outbound:
            events |= selectors.EVENT_WRITE

        if self._selector.get_key(session.sock).events != events:
            self._selector.modify(session.sock, events, session.session_id)

    def _teardown(self, session: Session, reason: str) -> None:
        self._selector.unregister(session.sock)
        self.sessions.close(session.session_id)
        session.sock.close()
        self.logger.info(
            "server_session_closed",
            extra={
                "session_id": session.session_id,
                "peer": _format_peer(session.peer),
                "reason": reason,
                "frames_handled": session.frames_handled,
                "sessions": len(self.sessions),
            },
        )

    def _close_all(self) -> None:
        for session in self.sessions.drain():
            self._selector.unregister(session.sock)
            session.sock.close()

        for sock in (self._listener, self._wakeup_reader):
            if sock is not None:
                self._selector.unregister(sock)
                sock.close()
        if self._wakeup_writer is not None:
            self._wakeup_writer.close()

        self._listener = None
        self._wakeup_reader = None
        self._wakeup_writer = None
        self._selector.close()


def _request_shutdown(server: PriceServer, logger: logging.Logger, signal_name: str) -> None:
    if server.stopping:
        return
    logger.info("server_shutdown_signal", extra={"signal": signal_name})
    server.stop()


def _install_signal_handlers(server: PriceServer, logger: logging.Logger) -> None:
    signals = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGQUIT"):
        signals.append(signal.SIGQUIT)

    for sig in signals:
        signal_name = sig.name
        signal.signal(
            sig,
            lambda *_args, signal_name=signal_name: _request_shutdown(
                server,
                logger,
                signal_name,
            ),
        )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Per-connection price tracker TCP server")
    parser.add_argument("port", nargs="?", help="TCP port to listen on (1024-65535), overrides PORT")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the price tracker server until interrupted."""

    args = _parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        configure_logging()
        logging.getLogger(__name__).error("server_invalid_settings", extra={"error": str(exc)})
        return 1

    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    try:
        port = validate_port(args.port) if args.port is not None else settings.PORT
    except ValueError as exc:
        logger.error("server_invalid_port", extra={"port": args.port, "error": str(exc)})
        return 1

    server = PriceServer(
        settings.HOST,
        port,
        backlog=settings.LISTEN_BACKLOG,
        max_sessions=settings.max_sessions(),
        framing_mode=settings.framing_mode(),
        recv_size=settings.RECV_SIZE,
        outbound_limit=settings.OUTBOUND_LIMIT,
        logger=logger,
    )
    try:
        server.bind()
    except ServerError as exc:
        logger.error("server_bind_failed", extra={"host": settings.HOST, "port": port, "error": str(exc)})
        return 1

    _install_signal_handlers(server, logger)
    host, bound_port = server.address
    logger.info(
        "server_startup",
        extra={
            "host": host,
            "port": bound_port,
            "framing_mode": server.framing_mode,
            "max_sessions": settings.max_sessions(),
        },
    )

    try:
        server.serve_forever()
    except ServerError as exc:
        logger.error("server_accept_failed", extra={"error": str(exc)})
        return 1

    logger.info("server_shutdown")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
