"""Resilience utilities for file-channel I/O.

Provides exponential backoff with jitter, an async retry helper for
transient lock/busy failures, and classification of OS errors.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import random
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from .exceptions import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# errno values that indicate another process holds the file
TRANSIENT_ERRNOS = frozenset({errno.EBUSY, errno.EAGAIN, errno.EDEADLK})
TRANSIENT_MESSAGE_MARKERS = ("lock", "busy", "ebusy", "eagain")


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_retries: int = 5
    backoff_base: float = 1.0  # seconds
    backoff_max: float = 30.0  # cap
    backoff_multiplier: float = 2.0
    jitter: float = 1.0  # upper bound of the uniform jitter added to each delay
    retryable_exceptions: tuple[type[Exception], ...] = (TransientIOError,)


def compute_backoff(
    attempt: int,
    config: RetryConfig | None = None,
    rng: random.Random | None = None,
) -> float:
    """Delay before the retry following ``attempt``.

    ``min(base * multiplier**attempt, max) + uniform(0, jitter)``. The cap
    applies before jitter so concurrent clients still spread out at the
    ceiling.
    """
    cfg = config or RetryConfig()
    delay = min(cfg.backoff_base * (cfg.backoff_multiplier**attempt), cfg.backoff_max)
    if cfg.jitter > 0:
        delay += (rng or random).uniform(0, cfg.jitter)
    return delay


def is_transient_io_error(exc: BaseException) -> bool:
    """Whether an OS-level failure looks like a lock or busy condition."""
    if isinstance(exc, TransientIOError):
        return True
    if isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    config: RetryConfig | None = None,
    context_msg: str = "",
    sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Execute an async function, retrying retryable failures with backoff.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        context_msg: Extra context for log messages (e.g. file path)
        sleep: Awaitable sleep, replaceable in tests
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: The first non-retryable exception, or the last one
            after all retries are exhausted
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""

    for attempt in range(cfg.max_retries + 1):
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            is_retryable = isinstance(exc, cfg.retryable_exceptions)

            if not is_retryable or attempt >= cfg.max_retries:
                if is_retryable:
                    logger.warning(
                        "RETRY_EXHAUSTED: attempt=%d/%d%s: %s",
                        attempt + 1,
                        cfg.max_retries + 1,
                        ctx,
                        exc,
                    )
                raise

            delay = compute_backoff(attempt, cfg)
            logger.info(
                "RETRYING: attempt=%d/%d delay=%.2fs%s: %s",
                attempt + 1,
                cfg.max_retries + 1,
                delay,
                ctx,
                exc,
            )
            await sleep(delay)
        else:
            if attempt > 0:
                logger.info(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d%s",
                    attempt + 1,
                    cfg.max_retries + 1,
                    ctx,
                )
            return result

    # Unreachable, but satisfies type checker
    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
