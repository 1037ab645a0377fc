"""Comparison, merging and incrementing of vector clocks."""

from __future__ import annotations

from enum import Enum

from pairgate.messages import VectorClock, VectorClockEntry


class Comparison(Enum):
    """How one vector clock relates to another."""

    IDENTICAL = "identical"
    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"


def _from_dict(values: dict[str, int]) -> VectorClock:
    return VectorClock(
        entries=[
            VectorClockEntry(coordinator_node_id=node_id, logical_timestamp=timestamp)
            for node_id, timestamp in values.items()
        ]
    )


def compare(vc1: VectorClock, vc2: VectorClock) -> Comparison:
    """Compare vc1 with vc2; missing entries count as zero."""
    first, second = vc1.as_dict(), vc2.as_dict()
    all_before = all_after = True
    for node_id in first.keys() | second.keys():
        ts1, ts2 = first.get(node_id, 0), second.get(node_id, 0)
        if ts1 < ts2:
            all_after = False
        elif ts1 > ts2:
            all_before = False
    if all_before and all_after:
        return Comparison.IDENTICAL
    if all_before:
        return Comparison.BEFORE
    if all_after:
        return Comparison.AFTER
    return Comparison.CONCURRENT


def merge(*args: VectorClock) -> VectorClock:
    """Return a clock holding the highest timestamp seen for each node."""
    merged: dict[str, int] = {}
    for clock in args:
        for entry in clock.entries:
            existing = merged.get(entry.coordinator_node_id)
            if existing is None or entry.logical_timestamp > existing:
                merged[entry.coordinator_node_id] = entry.logical_timestamp
    return _from_dict(merged)


def increment(vc: VectorClock, node_id: str) -> VectorClock:
    """Return a copy of vc with node_id's timestamp raised by one."""
    values = vc.as_dict()
    values[node_id] = values.get(node_id, 0) + 1
    return _from_dict(values)


def max_timestamp(vc: VectorClock) -> int:
    """Return the largest timestamp in vc, or 0 for an empty clock."""
    return max((entry.logical_timestamp for entry in vc.entries if entry.logical_timestamp > 0), default=0)