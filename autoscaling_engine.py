#!/usr/bin/env python3
"""
Autoscaling Engine
==================

Applies a replica target to every scalable workload matched by a label
selector, across Deployments and ReplicaSets.

A failed listing aborts the apply. A failed update of one workload does not:
the remaining workloads are still updated and the failures are reported
together at the end. Update failures collected before a failed listing are
still reported.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from autoscaler_errors import PartialApplyError, TransientFetchError, WorkloadUpdateError
from k8s_cluster_client import KubernetesClusterClient, ScalableTarget, WorkloadKind
from scaling_decision import ScalingDecision

logger = logging.getLogger(__name__)

SCALED_KINDS = (WorkloadKind.DEPLOYMENT, WorkloadKind.REPLICA_SET)


@dataclass
class ApplyReport:
    replicas: Optional[int]
    updated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class WorkloadScaler:
    """Sets the replica count of all matching workloads"""

    def __init__(self, cluster: KubernetesClusterClient, kinds: Sequence[WorkloadKind] = SCALED_KINDS):
        self.cluster = cluster
        self.kinds = tuple(kinds)

    def apply(self, decision: ScalingDecision, namespace: str, selector: str) -> ApplyReport:
        if decision.is_hold:
            logger.debug("Hold decision, nothing to apply")
            return ApplyReport(replicas=None)
        return self.scale_to(decision.target_replicas, namespace, selector)

    def scale_to(self, replicas: int, namespace: str, selector: str) -> ApplyReport:
        report = ApplyReport(replicas=replicas)
        failed: Dict[str, str] = {}
        listed_deployments: Set[str] = set()
        orphaned: List[str] = []

        for kind in self.kinds:
            try:
                targets = self.cluster.list_workloads(namespace, selector, kind)
            except TransientFetchError as e:
                if failed:
                    # Abort, but keep the update failures already collected
                    raise PartialApplyError(replicas, failed, report.updated) from e
                raise
            if not targets:
                logger.debug(f"No {kind.value}s match {selector} in {namespace}")
            for target in targets:
                if kind == WorkloadKind.DEPLOYMENT:
                    listed_deployments.add(target.name)
                if self._is_managed_elsewhere(target):
                    report.skipped.append(target.key)
                    logger.debug(f"Skipping {target.key}: controlled by a {target.controller_kind}")
                    if target.controller_name not in listed_deployments:
                        orphaned.append(target.key)
                    continue
                try:
                    self.cluster.update_replicas(namespace, kind, target.name, replicas)
                except WorkloadUpdateError as e:
                    failed[e.key] = str(e.cause)
                    logger.error(f"❌ {e}")
                    continue
                report.updated.append(target.key)
                logger.info(f"Scaled {target.key} in {namespace}: {target.current_replicas} -> {replicas}")

        if orphaned:
            logger.warning(
                f"⚠️ Skipped {', '.join(orphaned)} in {namespace}: owning Deployment does not "
                f"match {selector}, so neither the ReplicaSet nor its owner was scaled"
            )
        if failed:
            raise PartialApplyError(replicas, failed, report.updated)
        return report

    def _is_managed_elsewhere(self, target: ScalableTarget) -> bool:
        # The Deployment controller would revert a scale on its own ReplicaSets
        return (target.kind == WorkloadKind.REPLICA_SET
                and target.controller_kind == WorkloadKind.DEPLOYMENT.value)
