"""
Tests for utilization aggregation and the threshold decision engine.
"""

import pytest

from autoscaler_errors import EmptyMetricsError
from config import PolicyConfig
from scaling_decision import (
    HOLD,
    SCALE_DOWN,
    SCALE_UP,
    DecisionEngine,
    UtilizationSample,
    aggregate,
)


def _samples(*ratios):
    return [UtilizationSample(f"pod-{i}", cpu, memory) for i, (cpu, memory) in enumerate(ratios)]


def test_aggregate_means_and_count():
    result = aggregate(_samples((10.0, 40.0), (30.0, 60.0)))
    assert result.mean_cpu_ratio == pytest.approx(20.0)
    assert result.mean_memory_ratio == pytest.approx(50.0)
    assert result.sample_count == 2


def test_empty_samples_raise_instead_of_scaling_to_zero(policy):
    with pytest.raises(EmptyMetricsError):
        DecisionEngine(policy).decide([])


def test_high_cpu_scales_up_by_one(policy):
    decision = DecisionEngine(policy).decide(_samples((85, 40), (85, 40), (85, 40)))
    assert decision.action == SCALE_UP
    assert decision.target_replicas == 4


def test_high_memory_alone_scales_up(policy):
    decision = DecisionEngine(policy).decide(_samples((50, 90), (50, 90)))
    assert decision.action == SCALE_UP
    assert decision.target_replicas == 3


def test_threshold_is_inclusive_for_scale_up(policy):
    decision = DecisionEngine(policy).decide(_samples((80, 0), (80, 0)))
    assert decision.target_replicas == 3


def test_scale_up_capped_at_max_replicas():
    engine = DecisionEngine(PolicyConfig(min_replicas=1, max_replicas=3,
                                         scale_up_threshold_pct=80, scale_down_threshold_pct=20))
    decision = engine.decide(_samples((95, 95), (95, 95), (95, 95)))
    assert decision.action == SCALE_UP
    assert decision.target_replicas == 3


def test_both_low_scales_down_by_one(policy):
    decision = DecisionEngine(policy).decide(_samples((10, 15), (10, 15)))
    assert decision.action == SCALE_DOWN
    assert decision.target_replicas == 1


def test_scale_down_floored_at_min_replicas():
    engine = DecisionEngine(PolicyConfig(min_replicas=2, max_replicas=10,
                                         scale_up_threshold_pct=80, scale_down_threshold_pct=20))
    decision = engine.decide(_samples((5, 5), (5, 5)))
    assert decision.action == SCALE_DOWN
    assert decision.target_replicas == 2


@pytest.mark.parametrize("cpu, memory", [
    (10, 50),   # only CPU low
    (50, 10),   # only memory low
    (50, 50),   # both between thresholds
    (79.9, 20.1),
])
def test_hold_when_not_both_low_and_none_high(policy, cpu, memory):
    decision = DecisionEngine(policy).decide(_samples((cpu, memory), (cpu, memory)))
    assert decision.action == HOLD
    assert decision.is_hold
    assert decision.target_replicas is None


def test_scale_up_takes_priority_over_scale_down(policy):
    # CPU high, memory very low: up wins
    decision = DecisionEngine(policy).decide(_samples((90, 1)))
    assert decision.action == SCALE_UP


def test_mean_not_max_drives_decision(policy):
    decision = DecisionEngine(policy).decide(_samples((100, 30), (40, 30)))
    assert decision.action == HOLD


@pytest.mark.parametrize("count", [1, 2, 5, 12, 30])
@pytest.mark.parametrize("cpu, memory", [(95, 95), (5, 5), (50, 50)])
def test_target_always_within_bounds(count, cpu, memory):
    policy = PolicyConfig(min_replicas=3, max_replicas=8,
                          scale_up_threshold_pct=70, scale_down_threshold_pct=30)
    decision = DecisionEngine(policy).decide(_samples(*[(cpu, memory)] * count))
    if not decision.is_hold:
        assert policy.min_replicas <= decision.target_replicas <= policy.max_replicas


def test_decision_is_deterministic(policy):
    engine = DecisionEngine(policy)
    samples = _samples((85, 10), (70, 10), (90, 10))
    assert engine.decide(samples) == engine.decide(list(samples))
    assert DecisionEngine(policy).decide(samples) == engine.decide(samples)


def test_decision_to_dict(policy):
    decision = DecisionEngine(policy).decide(_samples((85, 40)))
    assert decision.to_dict()["action"] == SCALE_UP
    assert decision.to_dict()["target_replicas"] == 2
