"""Admission control for outbound inference requests."""

from __future__ import annotations

import math
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from time import monotonic
from typing import Callable, Deque, Iterator, Optional

from .errors import RateLimited


WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: Optional[str] = None


class RateGuard:
    """In-flight lock, cooldown window and sliding per-minute cap.

    Rules are checked in that order and the first failing rule decides
    the rejection reason.  An admitted caller owns the in-flight flag
    until it calls ``release``; ``admit`` wraps both ends so the flag is
    cleared on every exit path.
    """

    def __init__(
        self,
        *,
        cooldown_seconds: float,
        max_calls_per_minute: int,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self.max_calls_per_minute = max_calls_per_minute
        self._clock = clock
        self.last_call_at: Optional[float] = None
        self.recent_calls: Deque[float] = deque()
        self.in_flight = False

    def try_admit(self, now: Optional[float] = None) -> Admission:
        now = self._clock() if now is None else now
        if self.in_flight:
            return Admission(False, "Analysis request in progress.")

        if self.last_call_at is not None:
            remaining = self.cooldown_seconds - (now - self.last_call_at)
            if remaining > 0:
                wait = max(1, math.ceil(remaining))
                return Admission(False, f"Cooling down. Try again in {wait}s.")

        self._prune(now)
        if len(self.recent_calls) >= self.max_calls_per_minute:
            return Admission(
                False,
                f"Rate cap reached: at most {self.max_calls_per_minute} requests per minute.",
            )

        self.last_call_at = now
        self.recent_calls.append(now)
        self.in_flight = True
        return Admission(True)

    def acquire(self, now: Optional[float] = None) -> None:
        admission = self.try_admit(now)
        if not admission.admitted:
            raise RateLimited(admission.reason or "Request rejected by rate guard.")

    def release(self) -> None:
        self.in_flight = False

    @contextmanager
    def admit(self, now: Optional[float] = None) -> Iterator[None]:
        self.acquire(now)
        try:
            yield
        finally:
            self.release()

    def _prune(self, now: float) -> None:
        while self.recent_calls and now - self.recent_calls[0] >= WINDOW_SECONDS:
            self.recent_calls.popleft()
