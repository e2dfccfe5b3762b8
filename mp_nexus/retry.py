"""Bounded retry with exponential backoff.

``RetryExecutor.execute`` runs a zero-argument coroutine factory up to
``policy.max_attempts`` times. Between attempts it sleeps
``round(initial_delay_ms * backoff_multiplier ** (attempt - 1))`` milliseconds,
where ``attempt`` is the attempt that just failed. A failure the policy's
predicate rejects is re-raised immediately; after the last attempt the last
failure is re-raised unchanged. Classification is left to the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, TypeVar

import httpx

from .utils import Logger

T = TypeVar("T")

_RETRYABLE_KEYWORDS = (
    "enotfound",
    "econnrefused",
    "econnreset",
    "etimedout",
    "connection refused",
    "timed out",
    "timeout",
    "network",
    "502",
    "503",
    "504",
)
_FATAL_KEYWORDS = ("unauthorized", "forbidden", "invalid", "authentication")


def default_retry_predicate(failure: BaseException) -> bool:
    """Retry transport-looking failures, never auth/validation ones."""
    message = str(failure).lower()
    if any(kw in message for kw in _FATAL_KEYWORDS):
        return False
    if isinstance(failure, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True
    return any(kw in message for kw in _RETRYABLE_KEYWORDS)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, how long to wait, and which failures qualify."""

    max_attempts: int
    initial_delay_ms: int
    backoff_multiplier: float = 1.5
    retry_predicate: Callable[[BaseException], bool] = field(
        default=default_retry_predicate, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_ms(self, attempt: int) -> int:
        """Delay before the attempt following *attempt* (1-based)."""
        return round(self.initial_delay_ms * self.backoff_multiplier ** (attempt - 1))

    def with_predicate(self, predicate: Callable[[BaseException], bool]) -> "RetryPolicy":
        return replace(self, retry_predicate=predicate)


# Capability probes: cheap, a few quick tries.
QUICK = RetryPolicy(max_attempts=3, initial_delay_ms=500, backoff_multiplier=1.5)
# Platform CI calls.
NETWORK = RetryPolicy(max_attempts=5, initial_delay_ms=1000, backoff_multiplier=2)
# Compiler invocations: rebuilding is expensive, so few attempts and a flat delay.
BUILD = RetryPolicy(max_attempts=2, initial_delay_ms=2000, backoff_multiplier=1)

PRESETS: dict[str, RetryPolicy] = {"quick": QUICK, "network": NETWORK, "build": BUILD}


class RetryExecutor:
    """Runs async operations under a ``RetryPolicy``.

    Args:
        logger: Receives one event per attempt and one on recovery.
        sleep: Awaitable sleep taking seconds; ``asyncio.sleep`` by default.
    """

    def __init__(
        self,
        logger: Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.logger = logger or Logger()
        self.sleep = sleep or asyncio.sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        label: str = "operation",
    ) -> T:
        total = policy.max_attempts
        for attempt in range(1, total + 1):
            self.logger.debug(f"[retry] {label}: attempt {attempt}/{total}")
            try:
                result = await operation()
            except Exception as exc:
                if attempt == total:
                    self.logger.warn(
                        f"[retry] {label} failed on attempt {attempt}/{total}, giving up",
                        {"error": str(exc)},
                    )
                    raise
                if not policy.retry_predicate(exc):
                    self.logger.debug(
                        f"[retry] {label} failed on attempt {attempt}/{total} "
                        "with a non-retryable error",
                        {"error": str(exc)},
                    )
                    raise
                delay = policy.delay_ms(attempt)
                self.logger.warn(
                    f"[retry] {label} failed on attempt {attempt}/{total}, "
                    f"retrying in {delay}ms",
                    {"error": str(exc)},
                )
                await self.sleep(delay / 1000)
                continue

            if attempt > 1:
                self.logger.info(f"[retry] {label} recovered on attempt {attempt}/{total}")
            return result

        raise AssertionError("unreachable")
