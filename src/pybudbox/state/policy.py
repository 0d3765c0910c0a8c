"""Deterministic timing and acceptance policy for device links.

This module contains no I/O; the link and the snapshot store ask it
what to do next.
"""

from __future__ import annotations


def backoff_delay(failures: int, *, base: float, maximum: float) -> float:
    """Delay before the next attempt after *failures* consecutive failures.

    Starts at *base*, doubles per failure, and is capped at *maximum*.
    """
    if failures <= 1:
        return min(base, maximum)
    # Cap the exponent so huge failure counts cannot overflow.
    exponent = min(failures - 1, 62)
    return float(min(base * (2**exponent), maximum))


def retries_exhausted(failures: int, *, max_failures: int) -> bool:
    return failures >= max_failures


def should_accept_snapshot(*, current_generation: int | None, incoming_generation: int) -> bool:
    """Only snapshots from the newest poll generation may replace the current one."""
    if current_generation is None:
        return True
    return incoming_generation >= current_generation
