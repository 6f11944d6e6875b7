"""Sliding-window admission control shared by every API request."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from prometheus_client import Counter

logger = logging.getLogger(__name__)

RATE_LIMIT_DECISIONS = Counter(
    "notes_rate_limit_decisions_total",
    "Rate gate outcomes by result.",
    ["outcome"],
)


class RateLimitError(Exception):
    """Base class for rate limiting failures."""


class ThrottledError(RateLimitError):
    """Raised when an identity has used up its window."""

    def __init__(self, decision: RateLimitDecision) -> None:
        super().__init__(f"rate limit exceeded for {decision.identity!r}")
        self.decision = decision


class StoreUnavailableError(RateLimitError):
    """Raised when the shared counter store cannot answer."""


@dataclass(frozen=True, slots=True)
class WindowUsage:
    """Result of one atomic trim/count/record round-trip to a counter store."""

    admitted: bool
    count: int
    reset_after: float


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of a single admission check."""

    allowed: bool
    identity: str
    limit: int
    window_seconds: int
    remaining: int
    reset_after: float = 0.0


class CounterStore(Protocol):
    """Capability interface for sliding-window counter backends.

    Implementations must trim entries older than the window, count what is
    left and record the attempt only when the count is below ``limit``, all
    as one atomic step with respect to other callers.
    """

    async def record_and_count(
        self, identity: str, *, window_seconds: int, limit: int
    ) -> WindowUsage:
        ...


class RateGate:
    """Decide whether a request may proceed based on a shared sliding window."""

    def __init__(self, store: CounterStore, *, limit: int, window_seconds: int) -> None:
        """Bind the gate to a counter store and its window configuration."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self._limit = limit
        self._window_seconds = window_seconds

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    async def check_and_admit(self, identity: str) -> RateLimitDecision:
        """Record an attempt for ``identity`` and report whether it is admitted.

        Parameters
        ----------
        identity:
            Bucket key for the request; must be non-empty.

        Returns
        -------
        RateLimitDecision
            ``allowed`` is ``False`` once ``limit`` attempts were admitted
            within the trailing window. Denied attempts are not recorded.

        Raises
        ------
        StoreUnavailableError
            When the counter store fails. The gate never guesses an outcome.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        try:
            usage = await self._store.record_and_count(
                identity, window_seconds=self._window_seconds, limit=self._limit
            )
        except StoreUnavailableError:
            RATE_LIMIT_DECISIONS.labels(outcome="error").inc()
            raise
        except Exception as exc:
            RATE_LIMIT_DECISIONS.labels(outcome="error").inc()
            raise StoreUnavailableError(f"counter store failed for {identity!r}") from exc

        RATE_LIMIT_DECISIONS.labels(outcome="allowed" if usage.admitted else "throttled").inc()
        return RateLimitDecision(
            allowed=usage.admitted,
            identity=identity,
            limit=self._limit,
            window_seconds=self._window_seconds,
            remaining=max(0, self._limit - usage.count),
            reset_after=usage.reset_after,
        )

    async def admit(self, identity: str) -> RateLimitDecision:
        """Like :meth:`check_and_admit` but raise ``ThrottledError`` on denial."""
        decision = await self.check_and_admit(identity)
        if not decision.allowed:
            logger.info(
                "throttled identity=%s limit=%s window=%ss", identity, self._limit, self._window_seconds
            )
            raise ThrottledError(decision)
        return decision
