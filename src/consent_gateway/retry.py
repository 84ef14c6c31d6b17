"""Conflict retry policy for compare-and-swap writes"""
from typing import Callable, TypeVar

import structlog
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from consent_gateway.errors import Conflict, StaleWrite
from consent_gateway.observability.metrics import ConsentMetrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def run_with_conflict_retry(
    operation: Callable[[], T],
    retries: int = 1,
    metrics: ConsentMetrics | None = None,
    name: str = "consent write",
) -> T:
    """
    Run a read-check-write operation, retrying on StaleWrite.

    The operation must re-read state and re-check its preconditions on
    every attempt. After `retries` extra attempts the race surfaces as
    Conflict. Domain errors raised by the operation propagate unchanged.
    """

    def on_retry(retry_state):
        if metrics is not None:
            metrics.conflicts.inc(labels={"operation": name})
        logger.info("Concurrent modification, retrying",
            operation=name,
            attempt=retry_state.attempt_number)

    retrying = Retrying(
        stop=stop_after_attempt(retries + 1),
        retry=retry_if_exception_type(StaleWrite),
        before_sleep=on_retry,
    )
    try:
        return retrying(operation)
    except RetryError as e:
        cause = e.last_attempt.exception()
        logger.warning("Concurrent modification persisted", operation=name, error=str(cause))
        raise Conflict(f"{name} conflicted with a concurrent update") from cause
