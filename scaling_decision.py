#!/usr/bin/env python3
"""
Common decision contract for replica autoscaling, and the threshold engine
that produces it from one tick's utilization samples.
"""

import statistics
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from autoscaler_errors import EmptyMetricsError
from config import PolicyConfig

SCALE_UP = "scale_up"
SCALE_DOWN = "scale_down"
HOLD = "hold"


@dataclass(frozen=True)
class UtilizationSample:
    """Usage of one pod relative to its declared limits, in percent"""
    instance_id: str
    cpu_ratio: float
    memory_ratio: float


@dataclass(frozen=True)
class AggregateUtilization:
    mean_cpu_ratio: float
    mean_memory_ratio: float
    sample_count: int


@dataclass(frozen=True)
class ScalingDecision:
    action: str
    target_replicas: Optional[int] = None
    reason: str = ""

    @classmethod
    def scale_to(cls, replicas: int, action: str, reason: str = "") -> "ScalingDecision":
        return cls(action=action, target_replicas=replicas, reason=reason)

    @classmethod
    def hold(cls, reason: str = "") -> "ScalingDecision":
        return cls(action=HOLD, target_replicas=None, reason=reason)

    @property
    def is_hold(self) -> bool:
        return self.target_replicas is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "target_replicas": self.target_replicas,
            "reason": self.reason,
        }


def aggregate(samples: Sequence[UtilizationSample]) -> AggregateUtilization:
    """Mean CPU and memory ratio over all samples of a tick"""
    if not samples:
        raise EmptyMetricsError()
    return AggregateUtilization(
        mean_cpu_ratio=statistics.mean(s.cpu_ratio for s in samples),
        mean_memory_ratio=statistics.mean(s.memory_ratio for s in samples),
        sample_count=len(samples),
    )


class DecisionEngine:
    """Stateless threshold policy: one replica up or down per tick, or hold.

    Scaling up needs only one resource at or above the up threshold, scaling
    down needs both at or below the down threshold. The target is derived
    from the number of sampled pods and kept within the policy bounds.
    """

    def __init__(self, policy: PolicyConfig):
        self.policy = policy

    def _bounded(self, replicas: int) -> int:
        return max(self.policy.min_replicas, min(self.policy.max_replicas, replicas))

    def decide(self, samples: Sequence[UtilizationSample]) -> ScalingDecision:
        return self.decide_from(aggregate(samples))

    def decide_from(self, utilization: AggregateUtilization) -> ScalingDecision:
        policy = self.policy
        cpu = utilization.mean_cpu_ratio
        memory = utilization.mean_memory_ratio
        count = utilization.sample_count

        if cpu >= policy.scale_up_threshold_pct or memory >= policy.scale_up_threshold_pct:
            return ScalingDecision.scale_to(
                self._bounded(count + 1),
                SCALE_UP,
                f"CPU {cpu:.1f}% / memory {memory:.1f}% reached scale-up threshold "
                f"{policy.scale_up_threshold_pct}%",
            )

        if cpu <= policy.scale_down_threshold_pct and memory <= policy.scale_down_threshold_pct:
            return ScalingDecision.scale_to(
                self._bounded(count - 1),
                SCALE_DOWN,
                f"CPU {cpu:.1f}% and memory {memory:.1f}% at or below scale-down threshold "
                f"{policy.scale_down_threshold_pct}%",
            )

        return ScalingDecision.hold(
            f"CPU {cpu:.1f}% / memory {memory:.1f}% within thresholds"
        )
