"""
proofgate Execution Environment

The Ledger is the environment every registry, store and gate call runs in.
It supplies the two things no caller may supply for itself:

    timestamp()     Current time in whole seconds. Never decreases, even if
                    the underlying clock steps backwards.
    transaction()   Re-entrant lock serializing external calls, so each call
                    runs to completion as one indivisible unit.

Components that must observe a consistent view of each other (the access gate
reading the credential registry and the attestation store) share one Ledger.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of wall time in seconds."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Settable clock for tests and deterministic replays."""

    def __init__(self, start: int = 0):
        self._now = int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def set(self, value: int) -> None:
        with self._lock:
            self._now = int(value)

    def advance(self, seconds: int) -> int:
        with self._lock:
            self._now += int(seconds)
            return self._now


class Ledger:
    """Shared execution environment: monotonic time plus call serialization."""

    def __init__(self, clock: Clock = None):
        self._clock = clock or SystemClock()
        self._last = 0
        self._time_lock = threading.Lock()
        self._tx_lock = threading.RLock()

    @property
    def clock(self) -> Clock:
        return self._clock

    def timestamp(self) -> int:
        """Current ledger time; clamped so it never goes backwards."""
        with self._time_lock:
            now = int(self._clock.now())
            if now < self._last:
                now = self._last
            self._last = now
            return now

    @contextmanager
    def transaction(self) -> Iterator["Ledger"]:
        """Run the enclosed block as one serialized unit."""
        with self._tx_lock:
            yield self
