"""Session event log and incident report assembly."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

from .errors import AnalysisError, QuotaExceeded, RateLimited
from .protocol import LogEntry, LogSource
from .rate_guard import RateGuard


logger = logging.getLogger("omnitech")

MIN_REPORT_ENTRIES = 2


class EventLog:
    """Append-only session log, exposed newest first."""

    def __init__(self, listener: Optional[Callable[[LogEntry], None]] = None) -> None:
        self._entries: list[LogEntry] = []
        self._listener = listener

    def append(self, source: LogSource | str, message: str) -> LogEntry:
        entry = LogEntry(source=LogSource(source), message=" ".join(str(message).split()))
        self._entries.insert(0, entry)
        if self._listener is not None:
            self._listener(entry)
        return entry

    @property
    def entries(self) -> tuple[LogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def chronological(entries: Sequence[LogEntry], limit: Optional[int] = None) -> list[LogEntry]:
    """Take the most recent ``limit`` entries of a newest-first log, oldest first."""
    recent = list(entries[:limit]) if limit is not None else list(entries)
    return list(reversed(recent))


def format_local_report(
    entries: Sequence[LogEntry],
    *,
    limit: int,
    session_label: str = "anonymous",
    final_state: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    timeline = chronological(entries, limit)
    counts = Counter(entry.source.value for entry in timeline)
    lines = [
        f"FIELD INCIDENT REPORT - {now.strftime('%Y-%m-%d')}",
        f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S %Z')}".rstrip(),
        f"Session: {session_label}",
        (
            f"Entries: {len(timeline)} of {len(entries)} "
            f"(analyzer: {counts.get('ANALYZER', 0)}, system: {counts.get('SYSTEM', 0)}, "
            f"errors: {counts.get('ERROR', 0)})"
        ),
    ]
    if final_state:
        lines.append(f"Final safety state: {final_state}")
    lines.append("")
    lines.append("Timeline:")
    lines.extend(entry.as_line() for entry in timeline)
    return "\n".join(lines)


class ReportService(Protocol):
    async def summarize(self, log_text: str) -> str:
        ...


@dataclass(frozen=True)
class FieldReport:
    text: str
    generated_locally: bool
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ReportAssembler:
    """Builds an incident report remotely when possible, locally otherwise."""

    def __init__(
        self,
        service: Optional[ReportService],
        rate_guard: RateGuard,
        *,
        available: bool = True,
        entry_limit: int = 20,
    ) -> None:
        self.service = service
        self.rate_guard = rate_guard
        self.available = available
        self.entry_limit = entry_limit

    async def assemble(
        self,
        entries: Sequence[LogEntry],
        *,
        session_label: str = "anonymous",
        final_state: Optional[str] = None,
        degraded: bool = False,
    ) -> Optional[FieldReport]:
        if len(entries) < MIN_REPORT_ENTRIES:
            return None

        if degraded:
            logger.info("Session degraded, formatting report locally")
        elif self.available and self.service is not None:
            log_text = "\n".join(entry.as_line() for entry in chronological(entries, self.entry_limit))
            try:
                with self.rate_guard.admit():
                    text = await self.service.summarize(log_text)
                return FieldReport(text=text, generated_locally=False)
            except RateLimited as exc:
                logger.info("Report summary not admitted, formatting locally: %s", exc.message)
            except QuotaExceeded:
                logger.warning("Report summary over quota, formatting locally")
            except AnalysisError as exc:
                logger.warning("Report summary failed (%s), formatting locally", exc.kind)

        text = format_local_report(
            entries,
            limit=self.entry_limit,
            session_label=session_label,
            final_state=final_state,
        )
        return FieldReport(text=text, generated_locally=True)
