"""Process-wide provisioning counters.

One ``Stats`` instance is created per process and passed explicitly to the
scheduler and every account worker. The status reporter and the digest
alert read it through ``snapshot()`` from their own timers, so every access
goes through a single lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeAlias

Clock: TypeAlias = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    started_at: datetime
    taken_at: datetime
    cycles: int = 0
    capacity_errors: int = 0
    other_errors: int = 0
    successes: int = 0
    last_success_at: datetime | None = None

    @property
    def uptime(self) -> timedelta:
        return self.taken_at - self.started_at


class Stats:
    """Thread-safe monotonically increasing counters."""

    __slots__ = (
        "_lock",
        "_clock",
        "_started_at",
        "_cycles",
        "_capacity_errors",
        "_other_errors",
        "_successes",
        "_last_success_at",
    )

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = clock()
        self._cycles = 0
        self._capacity_errors = 0
        self._other_errors = 0
        self._successes = 0
        self._last_success_at: datetime | None = None

    def inc_cycle(self) -> None:
        with self._lock:
            self._cycles += 1

    def inc_capacity(self) -> None:
        with self._lock:
            self._capacity_errors += 1

    def inc_error(self) -> None:
        with self._lock:
            self._other_errors += 1

    def inc_success(self) -> None:
        with self._lock:
            self._successes += 1
            self._last_success_at = self._clock()

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                started_at=self._started_at,
                taken_at=self._clock(),
                cycles=self._cycles,
                capacity_errors=self._capacity_errors,
                other_errors=self._other_errors,
                successes=self._successes,
                last_success_at=self._last_success_at,
            )
