#!/usr/bin/env python3
"""
Kubernetes Cluster Client
=========================

Thin adapter over the official kubernetes client. It exposes only what the
autoscaler consumes: pods matched by a selector, per-pod usage from
metrics-server, and scalable workloads matched by a selector together with a
scale-subresource update.

Every request carries a bounded timeout and every API failure is re-raised as
one of the autoscaler's own error types.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.utils import parse_quantity

from autoscaler_errors import ConfigError, TransientFetchError, WorkloadUpdateError

logger = logging.getLogger(__name__)

METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"
METRICS_PLURAL = "pods"


class WorkloadKind(str, Enum):
    DEPLOYMENT = "Deployment"
    REPLICA_SET = "ReplicaSet"


@dataclass
class Instance:
    """A pod matched by the selector and the limits its containers declare"""
    name: str
    phase: str
    cpu_limits_millis: List[Optional[int]] = field(default_factory=list)
    memory_limits_bytes: List[Optional[int]] = field(default_factory=list)

    @property
    def cpu_limit_millis(self) -> Optional[int]:
        return _total_limit(self.cpu_limits_millis)

    @property
    def memory_limit_bytes(self) -> Optional[int]:
        return _total_limit(self.memory_limits_bytes)


@dataclass
class ContainerUsage:
    cpu_millis: int
    memory_bytes: int


@dataclass
class ScalableTarget:
    """A workload whose replica count the autoscaler manages"""
    kind: WorkloadKind
    name: str
    current_replicas: int
    controller_kind: Optional[str] = None
    controller_name: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.kind.value}/{self.name}"


def _total_limit(limits: List[Optional[int]]) -> Optional[int]:
    # A pod-level limit only exists when every container declares one
    if not limits or any(limit is None for limit in limits):
        return None
    return sum(limits)


def cpu_to_millis(quantity: Any) -> int:
    # Rounds up, so nanocore usage below one milli is not reported as idle
    return math.ceil(parse_quantity(quantity) * 1000)


def memory_to_bytes(quantity: Any) -> int:
    return math.ceil(parse_quantity(quantity))


def describe_api_error(error: Exception) -> str:
    if isinstance(error, ApiException):
        return f"{error.status} {error.reason}"
    return str(error) or type(error).__name__


def _controller(metadata: Any) -> Tuple[Optional[str], Optional[str]]:
    for owner in metadata.owner_references or []:
        if owner.controller:
            return owner.kind, owner.name
    return None, None


class KubernetesClusterClient:
    """Pods, pod metrics and scalable workloads of a single cluster"""

    def __init__(self, api_client: Optional[client.ApiClient] = None, request_timeout: float = 10.0):
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)
        self.request_timeout = request_timeout

    def list_instances(self, namespace: str, selector: str) -> List[Instance]:
        try:
            pods = self.core.list_namespaced_pod(
                namespace,
                label_selector=selector,
                _request_timeout=self.request_timeout,
            )
        except Exception as e:
            raise TransientFetchError("list pods", f"{namespace}/{selector}", describe_api_error(e)) from e

        instances = []
        for pod in pods.items:
            try:
                instances.append(self._to_instance(pod))
            except ValueError as e:
                raise TransientFetchError(
                    "parse pod limits", f"{namespace}/{pod.metadata.name}", e
                ) from e
        return instances

    def _to_instance(self, pod: client.V1Pod) -> Instance:
        cpu_limits = []
        memory_limits = []
        for container in pod.spec.containers or []:
            limits = (container.resources.limits if container.resources else None) or {}
            cpu_limits.append(cpu_to_millis(limits["cpu"]) if "cpu" in limits else None)
            memory_limits.append(memory_to_bytes(limits["memory"]) if "memory" in limits else None)
        return Instance(
            name=pod.metadata.name,
            phase=(pod.status.phase if pod.status else None) or "Unknown",
            cpu_limits_millis=cpu_limits,
            memory_limits_bytes=memory_limits,
        )

    def read_usage(self, namespace: str, instance_name: str) -> List[ContainerUsage]:
        target = f"{namespace}/{instance_name}"
        try:
            pod_metrics = self.custom.get_namespaced_custom_object(
                METRICS_GROUP,
                METRICS_VERSION,
                namespace,
                METRICS_PLURAL,
                instance_name,
                _request_timeout=self.request_timeout,
            )
        except Exception as e:
            raise TransientFetchError("read pod metrics", target, describe_api_error(e)) from e

        containers = pod_metrics.get("containers") or []
        if not containers:
            raise TransientFetchError("read pod metrics", target, "no container usage reported")
        try:
            return [
                ContainerUsage(
                    cpu_millis=cpu_to_millis(container["usage"]["cpu"]),
                    memory_bytes=memory_to_bytes(container["usage"]["memory"]),
                )
                for container in containers
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise TransientFetchError("parse pod metrics", target, f"malformed usage: {e}") from e

    def _list_fn(self, kind: WorkloadKind) -> Callable:
        return {
            WorkloadKind.DEPLOYMENT: self.apps.list_namespaced_deployment,
            WorkloadKind.REPLICA_SET: self.apps.list_namespaced_replica_set,
        }[kind]

    def _scale_fn(self, kind: WorkloadKind) -> Callable:
        return {
            WorkloadKind.DEPLOYMENT: self.apps.patch_namespaced_deployment_scale,
            WorkloadKind.REPLICA_SET: self.apps.patch_namespaced_replica_set_scale,
        }[kind]

    def list_workloads(self, namespace: str, selector: str, kind: WorkloadKind) -> List[ScalableTarget]:
        try:
            workloads = self._list_fn(kind)(
                namespace,
                label_selector=selector,
                _request_timeout=self.request_timeout,
            )
        except Exception as e:
            raise TransientFetchError(
                f"list {kind.value}s", f"{namespace}/{selector}", describe_api_error(e)
            ) from e

        targets = []
        for item in workloads.items:
            replicas = item.spec.replicas if item.spec and item.spec.replicas is not None else 1
            controller_kind, controller_name = _controller(item.metadata)
            targets.append(ScalableTarget(
                kind=kind,
                name=item.metadata.name,
                current_replicas=replicas,
                controller_kind=controller_kind,
                controller_name=controller_name,
            ))
        return targets

    def update_replicas(self, namespace: str, kind: WorkloadKind, name: str, replicas: int) -> None:
        body: Dict[str, Any] = {"spec": {"replicas": replicas}}
        try:
            self._scale_fn(kind)(
                name,
                namespace,
                body,
                _request_timeout=self.request_timeout,
            )
        except Exception as e:
            raise WorkloadUpdateError(kind.value, name, describe_api_error(e)) from e


def load_cluster_client(kubeconfig_path: Optional[str] = None,
                        request_timeout: float = 10.0) -> KubernetesClusterClient:
    """Load cluster credentials and build a client.

    An explicit kubeconfig wins; otherwise in-cluster config is tried first
    (the autoscaler usually runs as a pod), then the default kubeconfig.
    """
    try:
        if kubeconfig_path:
            logger.info(f"Loading kubeconfig from: {kubeconfig_path}")
            config.load_kube_config(config_file=kubeconfig_path)
        else:
            try:
                config.load_incluster_config()
                logger.info("Using in-cluster config")
            except ConfigException:
                config.load_kube_config()
                logger.info("Using default kubeconfig")
    except (ConfigException, OSError) as e:
        raise ConfigError(f"Could not load Kubernetes configuration: {e}") from e

    return KubernetesClusterClient(client.ApiClient(), request_timeout=request_timeout)
