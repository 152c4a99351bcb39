"""Safety state machine for OmniTech field sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from ..schemas import AnalysisResult
from .protocol import OperatingMode, SafetyState


SETTLED_STATES = (SafetyState.IDLE, SafetyState.SAFE, SafetyState.DANGER, SafetyState.UNCERTAIN)

TRANSITIONS: dict[tuple[OperatingMode, SafetyState], bool] = {
    **{(OperatingMode.SAFETY_CHECK, state): True for state in SETTLED_STATES},
    (OperatingMode.DIAGNOSIS, SafetyState.IDLE): True,
    (OperatingMode.DIAGNOSIS, SafetyState.SAFE): True,
    (OperatingMode.DIAGNOSIS, SafetyState.DANGER): False,
    (OperatingMode.DIAGNOSIS, SafetyState.UNCERTAIN): False,
    **{(OperatingMode.REPAIR_GUIDE, state): state is SafetyState.SAFE for state in SETTLED_STATES},
}

LOCK_REASONS: dict[SafetyState, str] = {
    SafetyState.DANGER: "Protocol locked: resolve the hazard and rescan before proceeding.",
    SafetyState.UNCERTAIN: "Visuals unclear: rescan with a better view before proceeding.",
    SafetyState.IDLE: "Run a safety check first.",
    SafetyState.SCANNING: "Analysis request in progress.",
}


@dataclass
class SafetyStateMachine:
    """Single authority over the session's safety state.

    Only classification modes move the state.  ``repair_guide`` is a
    side-channel query: its results fill the repair steps and leave the
    state alone.  Mode gating goes through ``TRANSITIONS`` and any pair
    missing from the table (every SCANNING pair) is denied.
    """

    state: SafetyState = SafetyState.IDLE
    on_change: Optional[Callable[[SafetyState], None]] = None
    _pre_scan: Optional[SafetyState] = field(default=None, init=False, repr=False)

    def allows(self, mode: OperatingMode | str) -> bool:
        return TRANSITIONS.get((OperatingMode(mode), self.state), False)

    def lock_reason(self, mode: OperatingMode | str) -> Optional[str]:
        if self.allows(mode):
            return None
        return f"{OperatingMode(mode).value} unavailable. {LOCK_REASONS.get(self.state, '')}".strip()

    def enabled_modes(self) -> list[str]:
        return [mode.value for mode in OperatingMode if self.allows(mode)]

    def begin_scan(self, mode: OperatingMode | str) -> None:
        if OperatingMode(mode) is OperatingMode.REPAIR_GUIDE:
            return
        self._pre_scan = self.state
        self._set(SafetyState.SCANNING)

    def apply(self, mode: OperatingMode | str, result: AnalysisResult) -> SafetyState:
        if OperatingMode(mode) is OperatingMode.REPAIR_GUIDE:
            return self.state
        self._pre_scan = None
        self._set(SafetyState(result.status))
        return self.state

    def abort(self) -> None:
        if self._pre_scan is None:
            return
        previous, self._pre_scan = self._pre_scan, None
        self._set(previous)

    def _set(self, new_state: SafetyState) -> None:
        if new_state is self.state:
            return
        self.state = new_state
        if self.on_change is not None:
            self.on_change(new_state)
