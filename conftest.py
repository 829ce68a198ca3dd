"""
Shared pytest fixtures: an in-memory cluster standing in for the Kubernetes API.
"""

from typing import Dict, List, Optional, Set, Tuple

import pytest

from autoscaler_errors import TransientFetchError, WorkloadUpdateError
from config import PolicyConfig
from k8s_cluster_client import ContainerUsage, Instance, ScalableTarget, WorkloadKind


class FakeCluster:
    """Records calls and serves pods, usage and workloads from dictionaries"""

    def __init__(self):
        self.instances: List[Instance] = []
        self.usage: Dict[str, List[ContainerUsage]] = {}
        self.workloads: Dict[WorkloadKind, List[ScalableTarget]] = {kind: [] for kind in WorkloadKind}
        self.fail_list_instances = False
        self.fail_usage: Set[str] = set()
        self.fail_list_kinds: Set[WorkloadKind] = set()
        self.fail_updates: Set[str] = set()
        self.usage_reads: List[str] = []
        self.listed_kinds: List[WorkloadKind] = []
        self.updates: List[Tuple[WorkloadKind, str, int]] = []

    def add_pod(self, name: str, cpu_limit: Optional[int] = 1000, memory_limit: Optional[int] = 1000,
                cpu_used: int = 0, memory_used: int = 0, phase: str = "Running") -> None:
        self.instances.append(Instance(
            name=name,
            phase=phase,
            cpu_limits_millis=[cpu_limit],
            memory_limits_bytes=[memory_limit],
        ))
        self.usage[name] = [ContainerUsage(cpu_millis=cpu_used, memory_bytes=memory_used)]

    def add_workload(self, kind: WorkloadKind, name: str, replicas: int,
                     controller_kind: Optional[str] = None, controller_name: Optional[str] = None) -> None:
        self.workloads[kind].append(ScalableTarget(kind, name, replicas, controller_kind, controller_name))

    def replicas_of(self, kind: WorkloadKind, name: str) -> int:
        return next(t.current_replicas for t in self.workloads[kind] if t.name == name)

    def list_instances(self, namespace, selector):
        if self.fail_list_instances:
            raise TransientFetchError("list pods", f"{namespace}/{selector}", "503 Service Unavailable")
        return list(self.instances)

    def read_usage(self, namespace, instance_name):
        self.usage_reads.append(instance_name)
        if instance_name in self.fail_usage:
            raise TransientFetchError("read pod metrics", f"{namespace}/{instance_name}", "404 Not Found")
        return self.usage[instance_name]

    def list_workloads(self, namespace, selector, kind):
        self.listed_kinds.append(kind)
        if kind in self.fail_list_kinds:
            raise TransientFetchError(f"list {kind.value}s", f"{namespace}/{selector}", "500 Internal Server Error")
        return [ScalableTarget(t.kind, t.name, t.current_replicas, t.controller_kind, t.controller_name)
                for t in self.workloads[kind]]

    def update_replicas(self, namespace, kind, name, replicas):
        if f"{kind.value}/{name}" in self.fail_updates:
            raise WorkloadUpdateError(kind.value, name, "409 Conflict")
        self.updates.append((kind, name, replicas))
        for target in self.workloads[kind]:
            if target.name == name:
                target.current_replicas = replicas


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def policy():
    return PolicyConfig(min_replicas=1, max_replicas=10,
                        scale_up_threshold_pct=80, scale_down_threshold_pct=20)
