from __future__ import annotations

from omnitech.analysis.fallback import CLASSIFICATION_POOL, DIAGNOSIS_POOL, REPAIR_POOL, FallbackGenerator
from omnitech.analysis.protocol import OperatingMode


def test_rotation_is_deterministic_and_wraps() -> None:
    generator = FallbackGenerator()
    pool_size = len(CLASSIFICATION_POOL)

    headlines = [generator.next_result("safety_check").headline for _ in range(pool_size + 1)]

    assert headlines[:pool_size] == [item.headline for item in CLASSIFICATION_POOL]
    assert headlines[pool_size] == CLASSIFICATION_POOL[0].headline
    assert generator.counter == pool_size + 1


def test_counter_is_shared_across_modes() -> None:
    generator = FallbackGenerator()
    generator.next_result(OperatingMode.SAFETY_CHECK)

    diagnosis = generator.next_result(OperatingMode.DIAGNOSIS)

    assert diagnosis.headline == DIAGNOSIS_POOL[1 % len(DIAGNOSIS_POOL)].headline


def test_classification_pools_never_fabricate_a_go_ahead() -> None:
    for result in CLASSIFICATION_POOL + DIAGNOSIS_POOL:
        assert result.status in {"DANGER", "UNCERTAIN"}
        assert result.repair_steps == []


def test_repair_pool_only_offers_verification_steps() -> None:
    for result in REPAIR_POOL:
        assert result.repair_steps
        assert any("technician" in step.lower() or "report" in step.lower() for step in result.repair_steps)


def test_results_are_copies() -> None:
    generator = FallbackGenerator()
    result = generator.next_result("repair_guide")
    result.repair_steps.clear()

    assert REPAIR_POOL[0].repair_steps
