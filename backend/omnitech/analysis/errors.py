"""Error taxonomy for analysis requests."""

from __future__ import annotations

from typing import Optional


class AnalysisError(Exception):
    """Base class for every failure an analysis request can report."""

    kind = "AnalysisError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class CaptureUnavailable(AnalysisError):
    kind = "CaptureUnavailable"

    def __init__(self, message: str = "Camera frame unavailable. Start the camera and try again.") -> None:
        super().__init__(message)


class RateLimited(AnalysisError):
    kind = "RateLimited"


class ModeLocked(AnalysisError):
    kind = "ModeLocked"


class QuotaExceeded(AnalysisError):
    kind = "QuotaExceeded"


class ServiceError(AnalysisError):
    kind = "ServiceError"

    def __init__(self, code: Optional[int], detail: str = "") -> None:
        self.code = code
        self.detail = detail
        label = f"HTTP {code}" if code is not None else "transport failure"
        super().__init__(f"Inference service error ({label}): {detail}" if detail else f"Inference service error ({label})")


class ServiceUnreachable(ServiceError):
    """Connection refused, DNS failure or timeout before any response."""

    kind = "ServiceUnreachable"

    def __init__(self, detail: str = "") -> None:
        super().__init__(None, detail)


class ResponseCorrupt(AnalysisError):
    kind = "ResponseCorrupt"


class PersistenceFailed(AnalysisError):
    kind = "PersistenceFailed"
