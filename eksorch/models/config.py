"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RetryConfig:
    """Bounded exponential backoff for idempotent create/update calls."""

    max_attempts: int = 4
    base_delay: float = 2.0
    max_delay: float = 60.0
    retry_destroy: bool = False


@dataclass
class ExecutionConfig:
    """Graph walk tuning."""

    max_concurrency: int = 4
    poll_interval: float = 5.0
    operation_timeout: float = 1800.0


@dataclass
class IdentityConfig:
    """How the acting principal is resolved."""

    mode: str = "sts"  # "sts" or "static"
    region: str = ""
    profile: str = ""
    static_caller_arn: str = ""


@dataclass
class StateConfig:
    """Local state file backing the simulated provisioning API."""

    path: str = ".eksorch/state.json"


@dataclass
class MetricsConfig:
    """Prometheus exposition."""

    enabled: bool = False
    port: int = 9108


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class EksOrchConfig:
    """Top-level eksorch runtime configuration."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    state: StateConfig = field(default_factory=StateConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
