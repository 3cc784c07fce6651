"""Ordering and range-average behavior of the per-connection price ledger."""

import random

from price_tracker.core.ledger import PriceLedger
from price_tracker.core.types import PriceEntry

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class _FullList(list):
    """List whose growth always fails, standing in for exhausted memory."""

    def insert(self, index, value):  # noqa: ANN001
        raise MemoryError


def _timestamps(ledger: PriceLedger) -> list[int]:
    return [entry.timestamp for entry in ledger]


def test_ledger_stays_sorted_after_every_insert() -> None:
    """Random insertion order must always leave timestamps non-decreasing."""

    rng = random.Random(1337)
    ledger = PriceLedger()
    for count in range(1, 301):
        ledger.insert(rng.randint(-1000, 1000), rng.randint(-500, 500))
        stamps = _timestamps(ledger)
        assert len(stamps) == count
        assert stamps == sorted(stamps)


def test_equal_timestamps_keep_arrival_order() -> None:
    """A new entry lands after existing entries with the same timestamp."""

    ledger = PriceLedger()
    ledger.insert(5, 1)
    ledger.insert(3, 2)
    ledger.insert(5, 3)
    ledger.insert(4, 4)

    assert list(ledger) == [
        PriceEntry(3, 2),
        PriceEntry(4, 4),
        PriceEntry(5, 1),
        PriceEntry(5, 3),
    ]


def test_inverted_range_returns_zero() -> None:
    """min_time greater than max_time is answered with zero."""

    ledger = PriceLedger()
    ledger.insert(100, 42)
    assert ledger.query_average(101, 100) == 0
    assert ledger.query_average(INT32_MAX, INT32_MIN) == 0
    assert ledger.query_average(16384, 12288) == 0


def test_empty_ledger_returns_zero() -> None:
    """No entries means a zero average for any range."""

    ledger = PriceLedger()
    assert ledger.query_average(INT32_MIN, INT32_MAX) == 0
    assert ledger.query_average(0, 0) == 0


def test_reference_example_average() -> None:
    """Three prices inside the range average to 101."""

    ledger = PriceLedger()
    ledger.insert(12345, 101)
    ledger.insert(12346, 102)
    ledger.insert(12347, 100)
    ledger.insert(40960, 5)

    assert ledger.query_average(12288, 16384) == 101
    assert ledger.query_average(40000, 50000) == 5
    assert ledger.query_average(10000, 12000) == 0


def test_duplicate_timestamps_are_all_counted() -> None:
    """Entries sharing a timestamp are averaged, not deduplicated."""

    ledger = PriceLedger()
    for price in (50, 60, 70):
        ledger.insert(1000, price)

    assert len(ledger) == 3
    assert ledger.query_average(1000, 1000) == 60


def test_range_bounds_are_inclusive() -> None:
    """Entries exactly on min_time and max_time contribute to the average."""

    ledger = PriceLedger()
    ledger.insert(60000, 600)
    ledger.insert(60001, 601)
    ledger.insert(60002, 602)

    assert ledger.query_average(60000, 60000) == 600
    assert ledger.query_average(60002, 60002) == 602
    assert ledger.query_average(60000, 60002) == 601
    assert ledger.query_average(60003, 60010) == 0


def test_average_truncates_toward_zero() -> None:
    """Negative fractional means round toward zero, not toward minus infinity."""

    ledger = PriceLedger()
    ledger.insert(1, -1)
    ledger.insert(2, -2)
    assert ledger.query_average(1, 2) == -1

    ledger.insert(3, 4)
    ledger.insert(4, 4)
    assert ledger.query_average(3, 4) == 4
    assert ledger.query_average(2, 3) == 1


def test_sum_does_not_overflow_int32() -> None:
    """Large prices are accumulated without wrapping."""

    ledger = PriceLedger()
    for timestamp in range(10):
        ledger.insert(timestamp, INT32_MAX)
    ledger.insert(10, INT32_MIN)
    ledger.insert(11, INT32_MIN)

    assert ledger.query_average(0, 9) == INT32_MAX
    assert ledger.query_average(10, 11) == INT32_MIN


def test_extreme_timestamps() -> None:
    """Full int32 timestamp range is ordered and queryable."""

    ledger = PriceLedger()
    ledger.insert(0, 1)
    ledger.insert(INT32_MAX, 999)
    ledger.insert(INT32_MIN, -500)
    ledger.insert(-1, 0)

    assert _timestamps(ledger) == [INT32_MIN, -1, 0, INT32_MAX]
    assert ledger.query_average(INT32_MIN, INT32_MAX) == 125
    assert ledger.query_average(-1, -1) == 0
    assert ledger.query_average(INT32_MIN, INT32_MIN) == -500


def test_failed_growth_drops_entry_and_keeps_state() -> None:
    """An insert that cannot allocate returns False and leaves the ledger intact."""

    ledger = PriceLedger()
    ledger.insert(10, 100)
    ledger.insert(20, 200)
    before = list(ledger)

    ledger._prices = _FullList(ledger._prices)

    assert ledger.insert(15, 150) is False
    assert list(ledger) == before
    assert ledger.query_average(0, 100) == 150


def test_clear_empties_ledger() -> None:
    """clear() releases every entry."""

    ledger = PriceLedger()
    ledger.insert(1, 1)
    ledger.clear()
    assert len(ledger) == 0
    assert ledger.query_average(0, 10) == 0
