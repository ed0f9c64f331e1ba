"""Execution engine: DAG walk, retry and cancellation."""

from eksorch.engine.executor import Executor
from eksorch.engine.retry import NO_RETRY, RetryPolicy, call_with_retry

__all__ = ["NO_RETRY", "Executor", "RetryPolicy", "call_with_retry"]
