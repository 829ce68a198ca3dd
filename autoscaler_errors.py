#!/usr/bin/env python3
"""
Exception types shared by the autoscaler components.

Anything derived from TickError is recoverable: the reconciliation loop logs
it, abandons the current tick and tries again on the next period.
ConfigError is only raised before the loop starts and is fatal.
"""

from typing import Dict, List, Optional


class AutoscalerError(Exception):
    """Base class for autoscaler failures"""


class ConfigError(AutoscalerError, ValueError):
    """Invalid policy, selector or runtime settings"""


class TickError(AutoscalerError):
    """A failure that aborts the current reconciliation tick only"""


class TransientFetchError(TickError):
    """Listing pods, reading pod usage or listing workloads failed"""

    def __init__(self, operation: str, target: str, cause: object):
        self.operation = operation
        self.target = target
        self.cause = cause
        super().__init__(f"{operation} failed for {target}: {cause}")


class MissingLimitError(TickError):
    """A sampled pod declares no usable limit for a resource"""

    def __init__(self, instance_name: str, resource: str):
        self.instance_name = instance_name
        self.resource = resource
        super().__init__(
            f"pod {instance_name} declares no {resource} limit on every container, "
            f"{resource} utilization is undefined"
        )


class EmptyMetricsError(TickError):
    """No utilization samples were available for the tick"""

    def __init__(self, message: str = "no utilization samples available"):
        super().__init__(message)


class WorkloadUpdateError(AutoscalerError):
    """Updating the replica count of a single workload failed"""

    def __init__(self, kind: str, name: str, cause: object):
        self.kind = kind
        self.name = name
        self.cause = cause
        super().__init__(f"updating {kind}/{name} failed: {cause}")

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"


class PartialApplyError(TickError):
    """One or more workload updates failed after a decision was made.

    Workloads that were updated successfully are not rolled back; they are
    listed in ``succeeded``.
    """

    def __init__(self, replicas: int, failed: Dict[str, str],
                 succeeded: Optional[List[str]] = None):
        self.replicas = replicas
        self.failed = dict(failed)
        self.succeeded = list(succeeded or [])
        names = ", ".join(sorted(self.failed))
        super().__init__(
            f"failed to scale {len(self.failed)} workload(s) to {replicas} replicas: {names}"
        )
