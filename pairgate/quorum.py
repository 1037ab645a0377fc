"""Quorum arithmetic for replicated reads and writes."""

from __future__ import annotations


def calculate_quorum(total_replicas: int) -> int:
    """Return the majority of total_replicas."""
    return total_replicas // 2 + 1


def required_replicas(consistency: str, total_replicas: int, active_replicas: int | None = None) -> int:
    """Return how many replicas must answer for the given consistency level.

    "one" needs one reply, "all" needs every replica; anything else is a
    quorum of the active replicas, or of all replicas when none are counted
    as active. Without active_replicas, every replica counts as active.
    """
    if active_replicas is None:
        active_replicas = total_replicas
    if consistency == "one":
        return 1
    if consistency == "all":
        return total_replicas
    if active_replicas > 0:
        return calculate_quorum(active_replicas)
    return calculate_quorum(total_replicas)


def is_quorum_reached(success_count: int, total_replicas: int) -> bool:
    """Tell whether success_count replies form a majority of total_replicas."""
    return success_count >= calculate_quorum(total_replicas)