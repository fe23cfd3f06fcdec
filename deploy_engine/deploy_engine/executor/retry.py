"""Configurable retry logic with exponential backoff and optional jitter."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for retry behaviour."""

    max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum number of retry attempts before re-raising.",
    )
    base_delay: float = Field(
        default=2.0,
        gt=0.0,
        description="Base delay in seconds for exponential backoff.",
    )
    max_delay: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound on delay in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="When enabled, randomise the delay within [0.5x, 1.5x].",
    )


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay for *attempt* given *config*."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


def retry_with_backoff(
    fn: Callable[[], T],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Execute *fn* with synchronous retry and exponential backoff.

    Parameters
    ----------
    fn:
        A zero-argument callable to invoke.  On each retry the callable is
        invoked from scratch -- it must be safe to call repeatedly.
    config:
        Retry parameters (see :class:`RetryConfig`).
    retryable_exceptions:
        Only exceptions whose type appears in this tuple trigger a retry.
        All other exceptions propagate immediately.
    sleep:
        Function used to wait between attempts.  Defaults to :func:`time.sleep`.

    Raises
    ------
    Exception
        The last exception raised by *fn* after all retry attempts are
        exhausted.
    """
    last_exception: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return fn()
        except retryable_exceptions as exc:
            last_exception = exc
            if attempt >= config.max_retries:
                break
            delay = _compute_delay(attempt, config)
            logger.warning(
                "Retry %d/%d after %.1fs: %s",
                attempt + 1,
                config.max_retries,
                delay,
                exc,
            )
            (sleep or time.sleep)(delay)

    assert last_exception is not None  # noqa: S101
    raise last_exception
