"""Typed results for OS probes.

A probe either observes a value (Ok) or fails to observe anything
(CheckFailed). Failures are folded against the previous observation so
a flaky probe keeps the last known value instead of flipping state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """A successful observation."""
    value: T


@dataclass(frozen=True)
class CheckFailed:
    """The probe could not observe a value."""
    reason: str


ProbeResult = Ok[T] | CheckFailed


def fold_probe(previous: T, result: Ok[T] | CheckFailed) -> T:
    """Fold a probe result against the previous value.

    Args:
        previous: Last known value.
        result: New probe result.

    Returns:
        The observed value, or previous if the probe failed.
    """
    if isinstance(result, Ok):
        return result.value
    return previous
