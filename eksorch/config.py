"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from eksorch.models.config import (
    EksOrchConfig,
    ExecutionConfig,
    IdentityConfig,
    LogConfig,
    MetricsConfig,
    RetryConfig,
    StateConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"EKSORCH_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_identity_mode(value: str) -> str:
    valid = {"sts", "static"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid identity mode: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> EksOrchConfig:
    """Load configuration from EKSORCH_* environment variables."""
    return EksOrchConfig(
        retry=RetryConfig(
            max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 4, min_val=1, max_val=10),
            base_delay=_env_float("RETRY_BASE_DELAY", 2.0, min_val=0.0),
            max_delay=_env_float("RETRY_MAX_DELAY", 60.0, min_val=0.0),
            retry_destroy=_env_bool("RETRY_DESTROY", False),
        ),
        execution=ExecutionConfig(
            max_concurrency=_env_int("MAX_CONCURRENCY", 4, min_val=1, max_val=32),
            poll_interval=_env_float("POLL_INTERVAL", 5.0, min_val=0.0),
            operation_timeout=_env_float("OPERATION_TIMEOUT", 1800.0, min_val=1.0),
        ),
        identity=IdentityConfig(
            mode=_validate_identity_mode(_env("IDENTITY_MODE", "sts")),
            region=_env("AWS_REGION", os.environ.get("AWS_REGION", "")),
            profile=_env("AWS_PROFILE", ""),
            static_caller_arn=_env("STATIC_CALLER_ARN", ""),
        ),
        state=StateConfig(
            path=_env("STATE_PATH", ".eksorch/state.json"),
        ),
        metrics=MetricsConfig(
            enabled=_env_bool("METRICS_ENABLED", False),
            port=_env_int("METRICS_PORT", 9108, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
