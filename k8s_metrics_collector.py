#!/usr/bin/env python3
"""
Kubernetes Metrics Collector
============================

Samples CPU and memory utilization for the pods matched by a label selector.
A pod's utilization is its usage summed over all containers divided by the
limits it declares, as a percentage. Any pod without limits, and any failed
usage read, fails the whole collection so that a decision is never made on a
partial view of the group.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Sequence

from autoscaler_errors import MissingLimitError
from k8s_cluster_client import ContainerUsage, Instance, KubernetesClusterClient
from scaling_decision import UtilizationSample

logger = logging.getLogger(__name__)

RUNNING_PHASE = "Running"


def _require_limits(instance: Instance) -> None:
    if not instance.cpu_limit_millis:
        raise MissingLimitError(instance.name, "cpu")
    if not instance.memory_limit_bytes:
        raise MissingLimitError(instance.name, "memory")


class UtilizationSampler:
    """Collects one UtilizationSample per running pod"""

    def __init__(self, cluster: KubernetesClusterClient, max_workers: int = 4):
        self.cluster = cluster
        self.max_workers = max_workers

    def collect(self, namespace: str, selector: str) -> List[UtilizationSample]:
        instances = self.cluster.list_instances(namespace, selector)
        running = [instance for instance in instances if instance.phase == RUNNING_PHASE]
        if len(running) != len(instances):
            logger.debug(f"Skipping {len(instances) - len(running)} pod(s) that are not {RUNNING_PHASE}")
        return self.sample(namespace, running)

    def sample(self, namespace: str, instances: Sequence[Instance]) -> List[UtilizationSample]:
        if not instances:
            return []

        # Limits are checked up front so a misconfigured pod costs no metrics reads
        for instance in instances:
            _require_limits(instance)

        workers = min(self.max_workers, len(instances))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="usage-reader") as pool:
            usages = list(pool.map(lambda instance: self.cluster.read_usage(namespace, instance.name),
                                   instances))

        samples = [self._to_sample(instance, usage) for instance, usage in zip(instances, usages)]
        for sample in samples:
            logger.debug(
                f"Pod {sample.instance_id}: CPU={sample.cpu_ratio:.1f}%, Memory={sample.memory_ratio:.1f}%"
            )
        return samples

    def _to_sample(self, instance: Instance, usage: Sequence[ContainerUsage]) -> UtilizationSample:
        total_cpu = sum(container.cpu_millis for container in usage)
        total_memory = sum(container.memory_bytes for container in usage)
        return UtilizationSample(
            instance_id=instance.name,
            cpu_ratio=total_cpu / instance.cpu_limit_millis * 100,
            memory_ratio=total_memory / instance.memory_limit_bytes * 100,
        )
