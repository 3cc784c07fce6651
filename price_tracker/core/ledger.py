"""Per-connection ordered price store with inclusive range averages."""

from bisect import bisect_left, bisect_right
from collections.abc import Iterator
from itertools import islice

from price_tracker.core.types import PriceEntry


def _truncating_average(total: int, count: int) -> int:
    # Integer division rounding toward zero; Python's // floors.
    quotient = abs(total) // count
    return -quotient if total < 0 else quotient


class PriceLedger:
    """
    Timestamp-ordered (timestamp, price) observations owned by a single session.

    Timestamps and prices live in parallel lists so range bounds can be found
    with binary search. Entries sharing a timestamp keep their arrival order.

    Thread-safety: NOT thread-safe. Only the event loop thread touches a ledger.
    """

    __slots__ = ("_timestamps", "_prices")

    def __init__(self) -> None:
        self._timestamps: list[int] = []
        self._prices: list[int] = []

    def __len__(self) -> int:
        return len(self._timestamps)

    def __iter__(self) -> Iterator[PriceEntry]:
        for timestamp, price in zip(self._timestamps, self._prices):
            yield PriceEntry(timestamp=timestamp, price=price)

    def insert(self, timestamp: int, price: int) -> bool:
        """
        Place a new observation after every entry with timestamp <= the new one.

        Returns False, leaving the ledger untouched, when storage cannot grow.
        The caller's control flow is never interrupted by an insert.
        """

        index = bisect_right(self._timestamps, timestamp)
        try:
            self._timestamps.insert(index, timestamp)
        except MemoryError:
            return False

        try:
            self._prices.insert(index, price)
        except MemoryError:
            del self._timestamps[index]
            return False

        return True

    def query_average(self, min_time: int, max_time: int) -> int:
        """Return the truncated mean price over [min_time, max_time], or 0 if nothing matches."""

        if min_time > max_time:
            return 0

        start = bisect_left(self._timestamps, min_time)
        stop = bisect_right(self._timestamps, max_time)
        count = stop - start
        if count <= 0:
            return 0

        total = sum(islice(self._prices, start, stop))
        return _truncating_average(total, count)

    def clear(self) -> None:
        self._timestamps.clear()
        self._prices.clear()
