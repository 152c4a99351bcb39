"""Analysis request orchestrator for one OmniTech field session."""

from __future__ import annotations

import asyncio
import logging
from time import monotonic
from typing import Any, Callable, Optional

from ..schemas import AnalysisResult
from ..settings import Settings, settings as default_settings
from .client import GeminiVisionClient, InferenceClient
from .collaborators import EventStore, FrameSource, NullEventStore, NullVoiceSink, VoiceSink
from .errors import AnalysisError, ModeLocked, RateLimited
from .fallback import FallbackGenerator
from .protocol import (
    SERVER_LOG,
    SERVER_REJECTED,
    SERVER_REPAIR,
    SERVER_REPORT,
    SERVER_RESULT,
    SERVER_STATUS,
    AnalysisOutcome,
    LogEntry,
    LogSource,
    OperatingMode,
    OutcomeKind,
    SafetyState,
)
from .rate_guard import RateGuard
from .reports import EventLog, FieldReport, ReportAssembler
from .state import SafetyStateMachine


logger = logging.getLogger("omnitech")


class AnalysisOrchestrator:
    """Owns the safety state, rate guard and event log of one session.

    ``trigger_analysis`` and ``generate_report`` are the only mutation
    entry points.  Every change is pushed through ``notify`` in the
    order it happens, so a client sees a result before the speech that
    describes it.
    """

    def __init__(
        self,
        *,
        service: GeminiVisionClient,
        frame_source: FrameSource,
        voice: Optional[VoiceSink] = None,
        event_store: Optional[EventStore] = None,
        user_id: Optional[str] = None,
        config: Settings = default_settings,
        notify: Optional[Callable[[dict[str, Any]], None]] = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.config = config
        self.frame_source = frame_source
        self.voice = voice or NullVoiceSink()
        self.event_store = event_store or NullEventStore()
        self.user_id = user_id
        self._notify_cb = notify

        available = config.inference_configured
        self.log = EventLog(listener=self._on_log)
        self.rate_guard = RateGuard(
            cooldown_seconds=config.cooldown_seconds,
            max_calls_per_minute=config.max_calls_per_minute,
            clock=clock,
        )
        self.fallback = FallbackGenerator()
        self.inference = InferenceClient(
            service,
            self.log,
            self.fallback,
            available=available,
            fallback_on_unreachable=config.fallback_on_unreachable,
        )
        self.safety = SafetyStateMachine(on_change=self._on_state_change)
        self.reports = ReportAssembler(
            service,
            self.rate_guard,
            available=available,
            entry_limit=config.report_entry_limit,
        )

        self.latest_result: Optional[AnalysisResult] = None
        self.repair_steps: list[str] = []
        self.consecutive_fallbacks = 0
        self._pending: set[asyncio.Task[None]] = set()

        if not available:
            self.log.append(LogSource.SYSTEM, "Inference service not configured; running in simulated mode.")

    @property
    def current_safety_state(self) -> SafetyState:
        return self.safety.state

    @property
    def log_entries(self) -> tuple[LogEntry, ...]:
        return self.log.entries

    @property
    def degraded(self) -> bool:
        if not self.inference.available:
            return True
        return self.consecutive_fallbacks >= self.config.degraded_notice_after

    @property
    def session_label(self) -> str:
        return self.user_id[:6] if self.user_id else "anonymous"

    async def trigger_analysis(
        self,
        mode: OperatingMode | str,
        user_text: Optional[str] = None,
    ) -> AnalysisOutcome:
        try:
            mode = OperatingMode(mode)
        except ValueError as exc:
            raise ValueError(f"Unsupported operating mode: {mode}") from exc

        lock_reason = self.safety.lock_reason(mode)
        if lock_reason:
            return self._reject(mode, ModeLocked(lock_reason))
        try:
            self.rate_guard.acquire()
        except RateLimited as exc:
            return self._reject(mode, exc)

        self.safety.begin_scan(mode)
        try:
            frame = self.frame_source.capture_frame()
            result, synthetic = await self.inference.analyze(mode, frame, user_text)
            self.safety.apply(mode, result)
        except AnalysisError as exc:
            logger.info("Analysis %s failed: %s", mode.value, exc.message)
            outcome = AnalysisOutcome(OutcomeKind.ERROR, mode, error_kind=exc.kind, message=exc.message)
            self._notify({"type": SERVER_RESULT, **outcome.to_payload()})
            return outcome
        finally:
            # No-op once a result was applied.
            self.safety.abort()
            self.rate_guard.release()

        return self._accept(mode, result, synthetic)

    async def generate_report(self) -> Optional[FieldReport]:
        report = await self.reports.assemble(
            self.log.entries,
            session_label=self.session_label,
            final_state=self.safety.state.value,
            degraded=self.degraded,
        )
        if report is None:
            return None
        suffix = " (local format)" if report.generated_locally else ""
        self.log.append(LogSource.SYSTEM, f"Field report generated{suffix}.")
        self._notify(
            {
                "type": SERVER_REPORT,
                "text": report.text,
                "local": report.generated_locally,
                "generated_at": report.generated_at.isoformat(),
            }
        )
        return report

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.safety.state.value,
            "degraded": self.degraded,
            "enabled_modes": self.safety.enabled_modes(),
            "latest_result": self.latest_result.model_dump() if self.latest_result else None,
            "repair_steps": list(self.repair_steps),
            "log_entries": len(self.log),
            "simulated_results": self.fallback.counter,
        }

    async def drain(self) -> None:
        """Wait for background persistence to settle."""
        if self._pending:
            await asyncio.gather(*tuple(self._pending), return_exceptions=True)

    def _accept(self, mode: OperatingMode, result: AnalysisResult, synthetic: bool) -> AnalysisOutcome:
        was_degraded = self.degraded
        self.consecutive_fallbacks = self.consecutive_fallbacks + 1 if synthetic else 0
        outcome = AnalysisOutcome(
            OutcomeKind.FALLBACK if synthetic else OutcomeKind.SUCCESS,
            mode,
            result=result,
        )

        if mode is OperatingMode.REPAIR_GUIDE:
            self.repair_steps = list(result.repair_steps)
            self._notify({"type": SERVER_REPAIR, "steps": list(self.repair_steps), "synthetic": synthetic})
        else:
            self.latest_result = result
            self._notify({"type": SERVER_RESULT, **outcome.to_payload()})
            self._speak(result.spoken_text())

        if self.degraded != was_degraded:
            self._publish_status()
        if not synthetic:
            self._schedule_persist(mode, result)
        return outcome

    def _reject(self, mode: OperatingMode, error: AnalysisError) -> AnalysisOutcome:
        self.log.append(LogSource.SYSTEM, error.message)
        outcome = AnalysisOutcome(OutcomeKind.REJECTED, mode, error_kind=error.kind, message=error.message)
        self._notify({"type": SERVER_REJECTED, **outcome.to_payload()})
        return outcome

    def _schedule_persist(self, mode: OperatingMode, result: AnalysisResult) -> None:
        if mode is OperatingMode.REPAIR_GUIDE:
            return
        if not self.user_id or not self.config.persist_events:
            return
        record = {
            "user_id": self.user_id,
            "mode": mode.value,
            "model_id": self.config.model_id,
            **result.model_dump(),
        }
        task = asyncio.create_task(self._persist(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, record: dict[str, Any]) -> None:
        try:
            await self.event_store.persist(record)
        except Exception as exc:
            logger.warning("Safety event persistence failed: %s", exc)

    def _speak(self, text: str) -> None:
        if not text:
            return
        try:
            self.voice.speak(text)
        except Exception as exc:
            logger.debug("Voice feedback failed: %s", exc)

    def _on_log(self, entry: LogEntry) -> None:
        self._notify({"type": SERVER_LOG, **entry.to_payload()})

    def _on_state_change(self, _state: SafetyState) -> None:
        self._publish_status()

    def _publish_status(self) -> None:
        self._notify(
            {
                "type": SERVER_STATUS,
                "state": self.safety.state.value,
                "degraded": self.degraded,
                "enabled_modes": self.safety.enabled_modes(),
            }
        )

    def _notify(self, event: dict[str, Any]) -> None:
        if self._notify_cb is None:
            return
        try:
            self._notify_cb(event)
        except Exception as exc:
            logger.warning("Dropping %s event: %s", event.get("type"), exc)
