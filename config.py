#!/usr/bin/env python3
"""
Central runtime configuration for the replica autoscaler.

Defaults can be overridden through environment variables, a YAML policy file
and finally explicit keyword overrides (CLI flags), in that order.
"""

import math
import os
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import yaml

from autoscaler_errors import ConfigError

# Scaling policy
DEFAULT_MIN_REPLICAS = 1
DEFAULT_MAX_REPLICAS = 10
DEFAULT_SCALE_UP_THRESHOLD_PCT = 80.0
DEFAULT_SCALE_DOWN_THRESHOLD_PCT = 20.0

# Reconciliation cadence
DEFAULT_PERIOD_SECONDS = 60.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_WORKERS = 4

# Logging
DEFAULT_LOG_LEVEL = "INFO"

_POLICY_ENV = {
    "min_replicas": ("AUTOSCALER_MIN_REPLICAS", int, DEFAULT_MIN_REPLICAS),
    "max_replicas": ("AUTOSCALER_MAX_REPLICAS", int, DEFAULT_MAX_REPLICAS),
    "scale_up_threshold_pct": ("AUTOSCALER_SCALE_UP_THRESHOLD", float, DEFAULT_SCALE_UP_THRESHOLD_PCT),
    "scale_down_threshold_pct": ("AUTOSCALER_SCALE_DOWN_THRESHOLD", float, DEFAULT_SCALE_DOWN_THRESHOLD_PCT),
}

_SETTINGS_ENV = {
    "period_seconds": ("AUTOSCALER_PERIOD_SECONDS", float, DEFAULT_PERIOD_SECONDS),
    "request_timeout_seconds": ("AUTOSCALER_REQUEST_TIMEOUT_SECONDS", float, DEFAULT_REQUEST_TIMEOUT_SECONDS),
    "max_workers": ("AUTOSCALER_MAX_WORKERS", int, DEFAULT_MAX_WORKERS),
}

# Keys accepted in a YAML policy file
_POLICY_FILE_KEYS = {
    "minReplicas": "min_replicas",
    "maxReplicas": "max_replicas",
    "scaleUpThresholdPct": "scale_up_threshold_pct",
    "scaleDownThresholdPct": "scale_down_threshold_pct",
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    # NaN compares false against every threshold, inf cannot be waited on
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


@dataclass(frozen=True)
class PolicyConfig:
    """Replica bounds and utilization thresholds, fixed for the process lifetime"""
    min_replicas: int = DEFAULT_MIN_REPLICAS
    max_replicas: int = DEFAULT_MAX_REPLICAS
    scale_up_threshold_pct: float = DEFAULT_SCALE_UP_THRESHOLD_PCT
    scale_down_threshold_pct: float = DEFAULT_SCALE_DOWN_THRESHOLD_PCT

    def __post_init__(self):
        if not _is_int(self.min_replicas) or self.min_replicas < 0:
            raise ConfigError(f"minReplicas must be an integer >= 0, got {self.min_replicas!r}")
        if not _is_int(self.max_replicas) or self.max_replicas < self.min_replicas:
            raise ConfigError(
                f"maxReplicas must be an integer >= minReplicas ({self.min_replicas}), "
                f"got {self.max_replicas!r}"
            )
        for name in ("scale_up_threshold_pct", "scale_down_threshold_pct"):
            value = getattr(self, name)
            if not _is_number(value) or value < 0:
                raise ConfigError(f"{name} must be a finite non-negative number, got {value!r}")
        if self.scale_down_threshold_pct >= self.scale_up_threshold_pct:
            raise ConfigError(
                f"scale-down threshold ({self.scale_down_threshold_pct}) must be lower than "
                f"scale-up threshold ({self.scale_up_threshold_pct})"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minReplicas": self.min_replicas,
            "maxReplicas": self.max_replicas,
            "scaleUpThresholdPct": self.scale_up_threshold_pct,
            "scaleDownThresholdPct": self.scale_down_threshold_pct,
        }


@dataclass(frozen=True)
class LoopSettings:
    """Cadence and resource bounds of the reconciliation loop"""
    period_seconds: float = DEFAULT_PERIOD_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS

    def __post_init__(self):
        if not _is_number(self.period_seconds) or self.period_seconds <= 0:
            raise ConfigError(f"period must be a finite positive number of seconds, got {self.period_seconds!r}")
        if self.period_seconds > threading.TIMEOUT_MAX:
            raise ConfigError(f"period must not exceed {threading.TIMEOUT_MAX} seconds, got {self.period_seconds!r}")
        if not _is_number(self.request_timeout_seconds) or self.request_timeout_seconds <= 0:
            raise ConfigError(
                f"request timeout must be a finite positive number of seconds, got {self.request_timeout_seconds!r}"
            )
        if not _is_int(self.max_workers) or self.max_workers < 1:
            raise ConfigError(f"max workers must be an integer >= 1, got {self.max_workers!r}")


def _read_env(spec: Mapping[str, tuple], environ: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    values = {}
    for field_name, (env_name, cast, default) in spec.items():
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            values[field_name] = default
            continue
        try:
            values[field_name] = cast(raw.strip())
        except ValueError:
            raise ConfigError(f"{env_name}={raw!r} is not a valid {cast.__name__}") from None
    return values


def _read_policy_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read policy file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in policy file {path}: {e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"Policy file {path} must contain a mapping, got {type(document).__name__}")

    unknown = sorted(str(key) for key in document if key not in _POLICY_FILE_KEYS)
    if unknown:
        raise ConfigError(f"Unknown key(s) in policy file {path}: {', '.join(unknown)}")
    return {_POLICY_FILE_KEYS[key]: value for key, value in document.items()}


def load_policy(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None,
                **overrides: Any) -> PolicyConfig:
    """Build the PolicyConfig from defaults, environment, policy file and overrides"""
    values = _read_env(_POLICY_ENV, environ)
    if path:
        values.update(_read_policy_file(path))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return PolicyConfig(**values)


def settings_from_env(environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> LoopSettings:
    values = _read_env(_SETTINGS_ENV, environ)
    values.update({key: value for key, value in overrides.items() if value is not None})
    return LoopSettings(**values)


# Label selector grammar (subset of k8s.io/apimachinery/pkg/labels)
_KEY = r"(?:[a-z0-9](?:[-a-z0-9.]*[a-z0-9])?/)?[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?"
_VALUE = r"(?:[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?)?"
_REQUIREMENT_PATTERNS = [
    re.compile(rf"!\s*{_KEY}"),
    re.compile(rf"{_KEY}"),
    re.compile(rf"{_KEY}\s*(?:==|!=|=)\s*{_VALUE}"),
    re.compile(rf"{_KEY}\s+(?:in|notin)\s*\(\s*{_VALUE}(?:\s*,\s*{_VALUE})*\s*\)"),
]


def _split_requirements(selector: str) -> List[str]:
    parts = []
    depth = 0
    current = []
    for char in selector:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ConfigError(f"Unbalanced parentheses in selector {selector!r}")
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if depth != 0:
        raise ConfigError(f"Unbalanced parentheses in selector {selector!r}")
    parts.append("".join(current))
    return parts


def validate_selector(selector: Optional[str]) -> str:
    """Check label selector syntax and return it stripped of surrounding whitespace"""
    if selector is None or not selector.strip():
        raise ConfigError("A non-empty label selector is required")
    selector = selector.strip()
    for requirement in _split_requirements(selector):
        requirement = requirement.strip()
        if not requirement:
            raise ConfigError(f"Empty requirement in selector {selector!r}")
        if not any(pattern.fullmatch(requirement) for pattern in _REQUIREMENT_PATTERNS):
            raise ConfigError(f"Malformed requirement {requirement!r} in selector {selector!r}")
    return selector


def validate_namespace(namespace: Optional[str]) -> str:
    if namespace is None or not namespace.strip():
        raise ConfigError("A namespace is required")
    return namespace.strip()
