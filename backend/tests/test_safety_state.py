from __future__ import annotations

import pytest

from omnitech.analysis.protocol import OperatingMode, SafetyState
from omnitech.analysis.state import TRANSITIONS, SafetyStateMachine
from omnitech.schemas import AnalysisResult


def result(status: str, **kwargs) -> AnalysisResult:
    return AnalysisResult(status=status, headline="Test", reasoning="Because.", action_required="Act.", **kwargs)


@pytest.mark.parametrize(
    ("state", "expected"),
    [
        (SafetyState.IDLE, ["safety_check", "diagnosis"]),
        (SafetyState.SAFE, ["safety_check", "diagnosis", "repair_guide"]),
        (SafetyState.DANGER, ["safety_check"]),
        (SafetyState.UNCERTAIN, ["safety_check"]),
        (SafetyState.SCANNING, []),
    ],
)
def test_transition_table_gates_modes(state: SafetyState, expected: list[str]) -> None:
    machine = SafetyStateMachine(state=state)

    assert machine.enabled_modes() == expected


def test_scanning_is_missing_from_the_table() -> None:
    assert all(state is not SafetyState.SCANNING for _mode, state in TRANSITIONS)


def test_lock_reason_explains_danger() -> None:
    machine = SafetyStateMachine(state=SafetyState.DANGER)

    assert machine.lock_reason("safety_check") is None
    assert "hazard" in machine.lock_reason("diagnosis").lower()


def test_classification_moves_through_scanning() -> None:
    changes: list[SafetyState] = []
    machine = SafetyStateMachine(on_change=changes.append)

    machine.begin_scan(OperatingMode.SAFETY_CHECK)
    machine.apply(OperatingMode.SAFETY_CHECK, result("DANGER"))
    machine.abort()

    assert changes == [SafetyState.SCANNING, SafetyState.DANGER]
    assert machine.state is SafetyState.DANGER


def test_abort_restores_pre_scan_state() -> None:
    machine = SafetyStateMachine(state=SafetyState.SAFE)

    machine.begin_scan("diagnosis")
    assert machine.state is SafetyState.SCANNING
    machine.abort()

    assert machine.state is SafetyState.SAFE


def test_repair_results_leave_state_alone() -> None:
    changes: list[SafetyState] = []
    machine = SafetyStateMachine(state=SafetyState.SAFE, on_change=changes.append)

    machine.begin_scan(OperatingMode.REPAIR_GUIDE)
    machine.apply(OperatingMode.REPAIR_GUIDE, result("DANGER", repair_steps=["Step"]))

    assert machine.state is SafetyState.SAFE
    assert changes == []
