"""Retry helper shared by every retryable failure class.

Each retryable exception type is paired with a RetryPolicy value: a backoff
controller plus a retry budget (``None`` = retry forever). A single call to
``retry_call`` keeps an independent counter and delay chain per exception
type, so a burst of rate limiting does not eat into the network-failure
budget and vice versa.

A server-supplied Retry-After (``retry_after_seconds`` on the exception) raises
the wait for that retry but does not feed the delay chain.

Implementation: uses tenacity internally. Tenacity drives the loop; the
per-class bookkeeping lives in ``_RetryTracker`` and is updated from the
``after`` hook so it does not depend on the order tenacity evaluates its
``wait`` and ``stop`` strategies in.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Type, TypeVar

import tenacity

from privy_export.lib.backoff import BackoffController
from privy_export.lib.errors import ExhaustedRetriesError

logger = logging.getLogger(__name__)

__all__ = ["RetryPolicy", "retry_call"]

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How one failure class is retried."""

    backoff: BackoffController
    max_retries: Optional[int] = None  # None = unbounded

    @classmethod
    def unbounded(cls, backoff: BackoffController) -> "RetryPolicy":
        return cls(backoff=backoff, max_retries=None)

    @classmethod
    def capped(cls, backoff: BackoffController, max_retries: int) -> "RetryPolicy":
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        return cls(backoff=backoff, max_retries=max_retries)

    def exhausted(self, retries: int) -> bool:
        return self.max_retries is not None and retries > self.max_retries


class _RetryTracker:
    """Per-call retry bookkeeping, one counter and delay chain per class."""

    def __init__(self, policies: Mapping[Type[BaseException], RetryPolicy]) -> None:
        self.policies = dict(policies)
        self.retries: Dict[Type[BaseException], int] = {k: 0 for k in self.policies}
        self.delays: Dict[Type[BaseException], Optional[float]] = {k: None for k in self.policies}
        self.last_kind: Optional[Type[BaseException]] = None
        self.pending_delay = 0.0

    def _kind_of(self, exc: BaseException) -> Type[BaseException]:
        for kind in self.policies:
            if isinstance(exc, kind):
                return kind
        raise LookupError(f"No retry policy for {type(exc).__name__}")

    def record_failure(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return
        kind = self._kind_of(exc)
        self.last_kind = kind
        self.retries[kind] += 1
        policy = self.policies[kind]
        if policy.exhausted(self.retries[kind]):
            self.pending_delay = 0.0
            return
        delay = policy.backoff.next_delay(self.retries[kind], self.delays[kind])
        self.delays[kind] = delay
        self.pending_delay = delay
        # Retry-After is a floor on the wait, still capped at max_delay.
        floor = getattr(exc, "retry_after_seconds", None)
        if floor:
            self.pending_delay = max(delay, min(floor, policy.backoff.max_delay))

    def should_stop(self, retry_state: tenacity.RetryCallState) -> bool:
        if self.last_kind is None:
            return False
        return self.policies[self.last_kind].exhausted(self.retries[self.last_kind])

    def wait(self, retry_state: tenacity.RetryCallState) -> float:
        return self.pending_delay


def retry_call(
    func: Callable[..., T],
    *args: Any,
    policies: Mapping[Type[BaseException], RetryPolicy],
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "operation",
    **kwargs: Any,
) -> T:
    """Call ``func`` and retry the exception types listed in ``policies``.

    Exceptions not listed propagate immediately and unchanged. When a class
    runs out of retries, ExhaustedRetriesError is raised from its last error.

    Example:
        page = retry_call(
            client.request_once,
            cursor,
            policies={
                RateLimitedError: RetryPolicy.unbounded(backoff),
                NetworkFailureError: RetryPolicy.capped(backoff, 5),
            },
            operation="fetch users page",
        )
    """
    tracker = _RetryTracker(policies)

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        kind = tracker.last_kind
        limit = tracker.policies[kind].max_retries if kind else None
        logger.warning(
            "%s failed (%s). Retrying in %.1fs... (retry %d%s)",
            operation,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
            tracker.retries[kind] if kind else 0,
            f"/{limit}" if limit is not None else "",
        )

    retryer = tenacity.Retrying(
        sleep=sleep,
        stop=tracker.should_stop,
        wait=tracker.wait,
        retry=tenacity.retry_if_exception_type(tuple(tracker.policies)),
        after=tracker.record_failure,
        before_sleep=before_sleep_handler,
        reraise=False,
    )

    try:
        return retryer(func, *args, **kwargs)
    except tenacity.RetryError as exc:
        last_error = exc.last_attempt.exception()
        kind = tracker.last_kind
        attempts = tracker.retries[kind] if kind else 0
        logger.warning(
            "%s failed after %d retries: %s",
            operation,
            attempts - 1,
            last_error,
        )
        raise ExhaustedRetriesError(
            f"{operation} failed after {attempts - 1} retries: {last_error}",
            attempts=attempts,
            operation=operation,
            last_error=last_error,
        ) from last_error
