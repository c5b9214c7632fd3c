"""
Per-requester admission throttle.

In-memory and single-process. Not safe for concurrent use from several
threads; the engine only calls it from the event loop.
"""

import math
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Admission:
    allowed: bool
    wait_seconds: int = 0


class RateLimiter:
    """
    Enforce a minimum interval between accepted requests of one requester.

    The table is swept opportunistically: once it holds more than
    sweep_threshold entries, requesters idle for longer than
    inactive_after seconds are forgotten.
    """

    def __init__(
        self,
        min_interval,
        sweep_threshold=1000,
        inactive_after=3600,
        clock=time.monotonic,
    ):
        self.min_interval = min_interval
        self.sweep_threshold = sweep_threshold
        self.inactive_after = inactive_after
        self._clock = clock
        self._last_accepted = {}

    def __len__(self):
        return len(self._last_accepted)

    def admit(self, requester_id) -> Admission:
        """
        Decide whether a request from requester_id may proceed.

        Denied calls leave the requester's timestamp untouched.
        """
        now = self._clock()
        if len(self._last_accepted) > self.sweep_threshold:
            self._sweep(now)

        last = self._last_accepted.get(requester_id)
        if last is not None:
            elapsed = now - last
            if elapsed < self.min_interval:
                wait = max(1, math.ceil(self.min_interval - elapsed))
                return Admission(allowed=False, wait_seconds=wait)

        self._last_accepted[requester_id] = now
        return Admission(allowed=True)

    def _sweep(self, now):
        horizon = now - self.inactive_after
        stale = [rid for rid, ts in self._last_accepted.items() if ts < horizon]
        for rid in stale:
            del self._last_accepted[rid]
        return len(stale)
