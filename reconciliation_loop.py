#!/usr/bin/env python3
"""
Reconciliation Loop
===================

Runs sample -> decide -> apply on a fixed period. A tick that fails at any
stage is logged and abandoned; the next tick starts from fresh cluster
state. Cancellation is honoured between ticks only, so a tick that has
started applying always finishes.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from autoscaler_errors import ConfigError, PartialApplyError, TickError
from autoscaling_engine import ApplyReport, WorkloadScaler
from config import LoopSettings, PolicyConfig, validate_namespace, validate_selector
from k8s_cluster_client import KubernetesClusterClient, load_cluster_client
from k8s_metrics_collector import UtilizationSampler
from scaling_decision import AggregateUtilization, DecisionEngine, ScalingDecision, aggregate

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    DECIDING = "deciding"
    APPLYING = "applying"
    STOPPED = "stopped"


@dataclass
class TickResult:
    started_at: datetime
    aggregate: Optional[AggregateUtilization] = None
    decision: Optional[ScalingDecision] = None
    report: Optional[ApplyReport] = None
    error: Optional[Exception] = None
    failed_stage: Optional[LoopState] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReconciliationLoop:
    """Drives the autoscaler for one selector in one namespace"""

    def __init__(self, sampler: UtilizationSampler, engine: DecisionEngine, scaler: WorkloadScaler,
                 namespace: str, selector: str, period_seconds: float = 60.0,
                 stop_event: Optional[threading.Event] = None):
        self.sampler = sampler
        self.engine = engine
        self.scaler = scaler
        self.namespace = namespace
        self.selector = selector
        self.period_seconds = period_seconds
        self.state = LoopState.IDLE
        self.tick_count = 0
        self._stop_event = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run_once(self) -> TickResult:
        """Execute a single tick. Errors are recorded in the result, never raised."""
        result = TickResult(started_at=datetime.now())
        try:
            self.state = LoopState.SAMPLING
            samples = self.sampler.collect(self.namespace, self.selector)

            self.state = LoopState.DECIDING
            result.aggregate = aggregate(samples)
            result.decision = self.engine.decide_from(result.aggregate)
            logger.info(
                f"📊 {self.namespace}/{self.selector}: pods={result.aggregate.sample_count}, "
                f"CPU={result.aggregate.mean_cpu_ratio:.1f}%, "
                f"Memory={result.aggregate.mean_memory_ratio:.1f}% -> {result.decision.action}"
                + (f" to {result.decision.target_replicas}" if not result.decision.is_hold else "")
            )

            if not result.decision.is_hold:
                self.state = LoopState.APPLYING
                result.report = self.scaler.apply(result.decision, self.namespace, self.selector)
                logger.info(
                    f"✅ Scaled {len(result.report.updated)} workload(s) to "
                    f"{result.report.replicas} replicas"
                )
        except PartialApplyError as e:
            result.error, result.failed_stage = e, self.state
            logger.error(f"❌ Tick partially applied: {e}")
        except TickError as e:
            result.error, result.failed_stage = e, self.state
            logger.warning(f"⚠️ Tick skipped while {self.state.value}: {e}")
        except Exception as e:
            result.error, result.failed_stage = e, self.state
            logger.exception(f"❌ Unexpected error while {self.state.value}: {e}")
        finally:
            self.state = LoopState.IDLE
            self.tick_count += 1
        return result

    def run_forever(self) -> None:
        logger.info(
            f"🔄 Reconciling {self.namespace}/{self.selector} every {self.period_seconds}s"
        )
        try:
            while not self._stop_event.is_set():
                self.run_once()
                if self._stop_event.wait(self.period_seconds):
                    break
        finally:
            self.state = LoopState.STOPPED
            logger.info(f"🛑 Reconciliation stopped after {self.tick_count} tick(s)")

    def stop(self) -> None:
        """Request shutdown; takes effect once the current tick has finished"""
        self._stop_event.set()

    def start(self) -> threading.Thread:
        """Run the loop on a background thread"""
        if self._thread and self._thread.is_alive():
            logger.warning("Reconciliation loop is already running")
            return self._thread
        self._thread = threading.Thread(target=self.run_forever, name="reconciliation-loop", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)


def build_loop(cluster: KubernetesClusterClient, policy: PolicyConfig, settings: LoopSettings,
               namespace: str, selector: str,
               stop_event: Optional[threading.Event] = None) -> ReconciliationLoop:
    return ReconciliationLoop(
        sampler=UtilizationSampler(cluster, max_workers=settings.max_workers),
        engine=DecisionEngine(policy),
        scaler=WorkloadScaler(cluster),
        namespace=namespace,
        selector=selector,
        period_seconds=settings.period_seconds,
        stop_event=stop_event,
    )


def run(selector: str, namespace: str, policy: PolicyConfig,
        period: Union[float, timedelta] = 60.0, *,
        cluster: Optional[KubernetesClusterClient] = None,
        kubeconfig_path: Optional[str] = None,
        request_timeout: float = 10.0,
        max_workers: int = 4,
        stop_event: Optional[threading.Event] = None) -> ReconciliationLoop:
    """Validate configuration, then reconcile until ``stop_event`` is set.

    Raises ConfigError before the first tick if the selector, policy or
    settings are invalid, or if cluster credentials cannot be loaded.
    """
    selector = validate_selector(selector)
    namespace = validate_namespace(namespace)
    if not isinstance(policy, PolicyConfig):
        raise ConfigError(f"policy must be a PolicyConfig, got {type(policy).__name__}")
    if isinstance(period, timedelta):
        period = period.total_seconds()
    settings = LoopSettings(
        period_seconds=period,
        request_timeout_seconds=request_timeout,
        max_workers=max_workers,
    )

    if cluster is None:
        cluster = load_cluster_client(kubeconfig_path, settings.request_timeout_seconds)

    loop = build_loop(cluster, policy, settings, namespace, selector, stop_event=stop_event)
    loop.run_forever()
    return loop
