"""Shared lightweight types to keep module interfaces explicit and typed."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ServiceMeta:
    """Metadata describing a running service instance."""

    name: str
    version: str
    env: str


@dataclass(frozen=True, slots=True)
class PriceEntry:
    """One observed price at a point in time."""

    timestamp: int
    price: int


@dataclass(frozen=True, slots=True)
class Frame:
    """Decoded 9-byte request: a kind byte followed by two signed 32-bit integers."""

    kind: bytes
    first: int
    second: int
