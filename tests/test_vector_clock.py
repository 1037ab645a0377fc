import pytest

from pairgate.messages import VectorClock, VectorClockEntry
from pairgate.vector_clock import Comparison, compare, increment, max_timestamp, merge


def clock(**values):
    return VectorClock(
        entries=[VectorClockEntry(coordinator_node_id=k, logical_timestamp=v) for k, v in values.items()]
    )


def test_empty_clocks_are_identical():
    assert compare(clock(), clock()) is Comparison.IDENTICAL


def test_missing_entry_counts_as_zero():
    assert compare(clock(a=1), clock(a=1, b=0)) is Comparison.IDENTICAL


@pytest.mark.parametrize(
    "left, right, expected",
    [
        (dict(a=1), dict(a=2), Comparison.BEFORE),
        (dict(a=2), dict(a=1), Comparison.AFTER),
        (dict(a=1), dict(a=1, b=1), Comparison.BEFORE),
        (dict(a=2, b=1), dict(a=1, b=2), Comparison.CONCURRENT),
        (dict(a=3, b=3), dict(a=3, b=3), Comparison.IDENTICAL),
    ],
)
def test_compare(left, right, expected):
    assert compare(clock(**left), clock(**right)) is expected


def test_compare_is_antisymmetric():
    a, b = clock(x=1, y=2), clock(x=2, y=2)
    assert compare(a, b) is Comparison.BEFORE
    assert compare(b, a) is Comparison.AFTER


def test_merge_takes_maximum():
    merged = merge(clock(a=1, b=5), clock(a=3), clock(c=2))
    assert merged.as_dict() == {"a": 3, "b": 5, "c": 2}


def test_merge_dominates_inputs():
    first, second = clock(a=2, b=1), clock(a=1, b=2)
    merged = merge(first, second)
    assert compare(first, merged) is Comparison.BEFORE
    assert compare(second, merged) is Comparison.BEFORE


def test_merge_of_nothing_is_empty():
    assert merge().entries == []


def test_increment_existing_and_new_node():
    original = clock(a=4)
    assert increment(original, "a").as_dict() == {"a": 5}
    assert increment(original, "b").as_dict() == {"a": 4, "b": 1}
    assert original.as_dict() == {"a": 4}


def test_increment_moves_clock_forward():
    original = clock(a=1, b=2)
    assert compare(original, increment(original, "b")) is Comparison.BEFORE


def test_max_timestamp():
    assert max_timestamp(clock(a=3, b=9, c=1)) == 9
    assert max_timestamp(clock()) == 0