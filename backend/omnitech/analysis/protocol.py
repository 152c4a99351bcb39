"""Message protocol and value types for OmniTech field sessions.

This module defines the constants exchanged over the field websocket
and the small value types shared by the analysis components.  A
client message carries a camera frame, an analysis request, or a
report request.  A server message carries safety status, log entries,
classification results, repair steps, speech for the client's voice
module, or a generated report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..schemas import AnalysisResult


# Types of events sent by the client
CLIENT_VIDEO = "client.video"
CLIENT_ANALYZE = "client.analyze"
CLIENT_REPORT = "client.report"
CLIENT_STOP = "client.stop"

# Types of events sent by the server
SERVER_STATUS = "server.status"
SERVER_LOG = "server.log"
SERVER_RESULT = "server.result"
SERVER_REPAIR = "server.repair"
SERVER_SPEECH = "server.speech"
SERVER_REPORT = "server.report"
SERVER_REJECTED = "server.rejected"
SERVER_SUMMARY = "server.summary"
SERVER_ERROR = "error"


class OperatingMode(str, Enum):
    SAFETY_CHECK = "safety_check"
    DIAGNOSIS = "diagnosis"
    REPAIR_GUIDE = "repair_guide"


class SafetyState(str, Enum):
    IDLE = "IDLE"
    SCANNING = "SCANNING"
    DANGER = "DANGER"
    SAFE = "SAFE"
    UNCERTAIN = "UNCERTAIN"


class LogSource(str, Enum):
    SYSTEM = "SYSTEM"
    ERROR = "ERROR"
    ANALYZER = "ANALYZER"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    """One timestamped event in the session log."""

    source: LogSource
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_line(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.source.value}: {self.message}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AnalysisOutcome:
    """Result of one ``trigger_analysis`` call.

    ``kind`` discriminates between a genuine classification, a
    synthetic fallback, a request that was never admitted, and a
    request that failed after admission.  ``error_kind`` carries the
    stable name of the error for the last two cases.
    """

    kind: OutcomeKind
    mode: OperatingMode
    result: Optional[AnalysisResult] = None
    error_kind: Optional[str] = None
    message: str = ""

    @property
    def synthetic(self) -> bool:
        return self.kind is OutcomeKind.FALLBACK

    @property
    def ok(self) -> bool:
        return self.kind in {OutcomeKind.SUCCESS, OutcomeKind.FALLBACK}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "outcome": self.kind.value,
            "mode": self.mode.value,
            "synthetic": self.synthetic,
        }
        if self.result is not None:
            payload["result"] = self.result.model_dump()
        if self.error_kind:
            payload["error_kind"] = self.error_kind
        if self.message:
            payload["message"] = self.message
        return payload
