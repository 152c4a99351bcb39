"""Interfaces to the collaborators around the analysis core.

Frame capture, speech playback and durable storage live outside the
core.  The orchestrator only sees these narrow protocols, which keeps
it testable with plain fakes.
"""

from __future__ import annotations

import asyncio
from time import monotonic
from typing import Any, Callable, Optional, Protocol

from .protocol import SERVER_SPEECH


class FrameSource(Protocol):
    def capture_frame(self) -> Optional[bytes]:
        """Return the current JPEG frame, or None when capture is not ready."""


class VoiceSink(Protocol):
    def speak(self, text: str) -> None:
        """Queue text for speech playback without blocking."""


class EventStore(Protocol):
    async def persist(self, record: dict[str, Any]) -> None:
        """Store one genuine analysis record."""


class LatestFrameSource:
    """Holds the most recent frame pushed by the client."""

    def __init__(self, *, max_age_seconds: float = 5.0, clock: Callable[[], float] = monotonic) -> None:
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._frame: Optional[bytes] = None
        self._received_at = 0.0

    def push(self, jpeg: bytes) -> None:
        self._frame = jpeg
        self._received_at = self._clock()

    def capture_frame(self) -> Optional[bytes]:
        if not self._frame:
            return None
        if self.max_age_seconds and self._clock() - self._received_at > self.max_age_seconds:
            return None
        return self._frame


class QueueVoiceSink:
    """Forwards speech to the client, which owns the synthesizer."""

    def __init__(self, outbound: "asyncio.Queue[dict[str, Any] | None]") -> None:
        self._outbound = outbound

    def speak(self, text: str) -> None:
        self._outbound.put_nowait({"type": SERVER_SPEECH, "text": text})


class NullVoiceSink:
    def speak(self, text: str) -> None:
        return None


class NullEventStore:
    async def persist(self, record: dict[str, Any]) -> None:
        return None
