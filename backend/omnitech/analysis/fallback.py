"""Synthetic results served when the inference service cannot answer.

The pools rotate deterministically so a session keeps behaving the same
way (state transitions, speech, logging) while the service is over
quota or unreachable.  Classification pools never contain SAFE: a
synthetic result must not unlock repair guidance.
"""

from __future__ import annotations

from .protocol import OperatingMode
from ..schemas import AnalysisResult


CLASSIFICATION_POOL: tuple[AnalysisResult, ...] = (
    AnalysisResult(
        status="UNCERTAIN",
        headline="Visual Feed Inconclusive",
        reasoning="The component area is too dark and partially obstructed to assess reliably.",
        action_required="Improve lighting, move closer, and hold the camera steady before rescanning.",
    ),
    AnalysisResult(
        status="DANGER",
        headline="Possible Water Near Electrics",
        reasoning="A reflective surface consistent with standing water appears close to the wiring.",
        action_required="Do not touch the equipment. Isolate power at the source and dry the area first.",
    ),
    AnalysisResult(
        status="UNCERTAIN",
        headline="Insulation Condition Unclear",
        reasoning="Cable insulation is visible but discoloration cannot be distinguished from shadow.",
        action_required="Capture a closer, well-lit view of the cable run before proceeding.",
    ),
)

DIAGNOSIS_POOL: tuple[AnalysisResult, ...] = (
    AnalysisResult(
        status="UNCERTAIN",
        headline="Fault Not Identifiable",
        reasoning="No failed component can be singled out from the current angle.",
        action_required="Describe the symptom and frame the suspected component directly.",
    ),
    AnalysisResult(
        status="DANGER",
        headline="Scorch Marks Detected",
        reasoning="Dark scorching around a terminal suggests overheating or arcing.",
        action_required="Stop. De-energize the circuit and escalate to a qualified technician.",
    ),
)

REPAIR_POOL: tuple[AnalysisResult, ...] = (
    AnalysisResult(
        status="SAFE",
        headline="Verification Checklist Ready",
        reasoning="Live guidance is unavailable, so only verification steps are offered.",
        action_required="Work through the checklist and rescan once the service is back.",
        repair_steps=[
            "Confirm power is isolated at the source and tag the isolation point.",
            "Verify zero voltage with a tested meter before touching any conductor.",
            "Photograph the component label and consult the manufacturer's service manual.",
            "Escalate to a qualified technician if any step cannot be verified.",
        ],
    ),
    AnalysisResult(
        status="SAFE",
        headline="Conservative Inspection Steps",
        reasoning="Live guidance is unavailable, so only inspection steps are offered.",
        action_required="Inspect only; do not replace parts until guidance is confirmed.",
        repair_steps=[
            "Keep the equipment de-energized for the whole inspection.",
            "Check connectors and fasteners for looseness without forcing them.",
            "Record anything damaged and report it before attempting a repair.",
        ],
    ),
)

POOLS: dict[OperatingMode, tuple[AnalysisResult, ...]] = {
    OperatingMode.SAFETY_CHECK: CLASSIFICATION_POOL,
    OperatingMode.DIAGNOSIS: DIAGNOSIS_POOL,
    OperatingMode.REPAIR_GUIDE: REPAIR_POOL,
}


class FallbackGenerator:
    """Rotates over fixed pools using one session-wide counter."""

    def __init__(self) -> None:
        self.counter = 0

    def next_result(self, mode: OperatingMode | str) -> AnalysisResult:
        pool = POOLS[OperatingMode(mode)]
        result = pool[self.counter % len(pool)]
        self.counter += 1
        return result.model_copy(deep=True)
