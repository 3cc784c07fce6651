"""Fixed-size binary codec for price tracker requests and responses.

Requests are 9 bytes: one kind byte followed by two big-endian signed 32-bit
integers. Responses are a single big-endian signed 32-bit integer. There is no
length prefix or delimiter, so stream readers must assemble whole frames
before decoding.
"""

import struct

from price_tracker.core.types import Frame

REQUEST_SIZE = 9
RESPONSE_SIZE = 4

MSG_INSERT = b"I"
MSG_QUERY = b"Q"

_REQUEST = struct.Struct(">cii")
_RESPONSE = struct.Struct(">i")


class FrameError(ValueError):
    """Raised when a buffer does not have the exact size of a frame."""


def decode_request(data: bytes) -> Frame:
    """Decode exactly one request frame; unknown kinds decode like any other."""

    if len(data) != REQUEST_SIZE:
        raise FrameError(f"request frame must be {REQUEST_SIZE} bytes, got {len(data)}")
    kind, first, second = _REQUEST.unpack(data)
    return Frame(kind=kind, first=first, second=second)


def encode_request(kind: bytes, first: int, second: int) -> bytes:
    if len(kind) != 1:
        raise FrameError(f"request kind must be a single byte, got {kind!r}")
    return _REQUEST.pack(kind, first, second)


def encode_insert(timestamp: int, price: int) -> bytes:
    return encode_request(MSG_INSERT, timestamp, price)


def encode_query(min_time: int, max_time: int) -> bytes:
    return encode_request(MSG_QUERY, min_time, max_time)


def encode_response(value: int) -> bytes:
    """Encode a query answer as 4 big-endian bytes."""

    return _RESPONSE.pack(value)


def decode_response(data: bytes) -> int:
    if len(data) != RESPONSE_SIZE:
        raise FrameError(f"response frame must be {RESPONSE_SIZE} bytes, got {len(data)}")
    return _RESPONSE.unpack(data)[0]


class FrameAssembler:
    """Accumulate stream bytes for one connection and cut them into request frames."""

    __slots__ = ("_buffer",)

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes that do not yet form a whole frame."""

        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buffer.extend(chunk)
        complete = len(self._buffer) - len(self._buffer) % REQUEST_SIZE
        if complete == 0:
            return []

        frames = [
            bytes(self._buffer[offset : offset + REQUEST_SIZE])
            for offset in range(0, complete, REQUEST_SIZE)
        ]
        del self._buffer[:complete]
        return frames

    def clear(self) -> None:
        self._buffer.clear()
