#!/usr/bin/env python3
"""
Replica Autoscaler CLI
======================

Keeps the replica count of the Deployments/ReplicaSets matched by a label
selector proportional to the CPU and memory utilization of their pods.

Example:
    python3 autoscaler.py --selector app=web --namespace shop --period 30
"""

import argparse
import logging
import os
import signal
import sys
from typing import List, Optional

from autoscaler_errors import ConfigError
from config import (
    DEFAULT_LOG_LEVEL,
    load_policy,
    settings_from_env,
    validate_namespace,
    validate_selector,
)
from k8s_cluster_client import load_cluster_client
from logging_utils import get_app_logger
from reconciliation_loop import ReconciliationLoop, build_loop

logger = logging.getLogger("autoscaler")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scale workloads matching a label selector based on pod CPU/memory utilization"
    )
    parser.add_argument("--selector", required=True, help="Label selector, e.g. app=web")
    parser.add_argument("--namespace", default="default")
    parser.add_argument("--policy-file", help="YAML file with minReplicas/maxReplicas/thresholds")
    parser.add_argument("--min-replicas", type=int)
    parser.add_argument("--max-replicas", type=int)
    parser.add_argument("--scale-up-threshold", type=float, help="Percent of limit")
    parser.add_argument("--scale-down-threshold", type=float, help="Percent of limit")
    parser.add_argument("--period", type=float, help="Seconds between reconciliation ticks")
    parser.add_argument("--request-timeout", type=float, help="Timeout in seconds for each API call")
    parser.add_argument("--max-workers", type=int, help="Concurrent pod metrics reads")
    parser.add_argument("--kubeconfig", help="Path to kubeconfig (default: in-cluster, then ~/.kube/config)")
    parser.add_argument("--log-level", default=os.getenv("AUTOSCALER_LOG_LEVEL", DEFAULT_LOG_LEVEL))
    parser.add_argument("--log-file", default=os.getenv("AUTOSCALER_LOG_FILE"))
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    return parser


def _install_signal_handlers(loop: ReconciliationLoop) -> None:
    def handle(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, stopping after the current tick")
        loop.stop()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        get_app_logger(None, args.log_level, args.log_file)
        selector = validate_selector(args.selector)
        namespace = validate_namespace(args.namespace)
        policy = load_policy(
            args.policy_file,
            min_replicas=args.min_replicas,
            max_replicas=args.max_replicas,
            scale_up_threshold_pct=args.scale_up_threshold,
            scale_down_threshold_pct=args.scale_down_threshold,
        )
        settings = settings_from_env(
            period_seconds=args.period,
            request_timeout_seconds=args.request_timeout,
            max_workers=args.max_workers,
        )
        cluster = load_cluster_client(args.kubeconfig, settings.request_timeout_seconds)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger.info(f"Policy: {policy.to_dict()}")
    loop = build_loop(cluster, policy, settings, namespace, selector)

    if args.once:
        result = loop.run_once()
        return 0 if result.ok else 1

    _install_signal_handlers(loop)
    loop.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
