"""Per-provider usage ledger."""

from __future__ import annotations

import datetime as dt
import threading
from typing import Callable, Optional

from switchyard.core.models import UsageStatistics
from switchyard.logging_setup import get_logger

logger = get_logger(__name__)


class UsageLedger:
    """Running aggregate of requests, tokens, errors, latency and spend.

    Owned by exactly one provider, which calls record() once per completed
    attempt. Updates are read-modify-write, so they run under a lock; readers
    get an immutable UsageStatistics snapshot.
    """

    def __init__(
        self,
        *,
        track_cost: bool = True,
        now: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.timezone.utc),
    ):
        self._lock = threading.Lock()
        self._track_cost = track_cost
        self._now = now
        self._requests = 0
        self._tokens = 0
        self._errors = 0
        self._avg_latency = 0.0
        self._last_used: Optional[dt.datetime] = None
        self._cost = 0.0

    def record(
        self,
        *,
        tokens: int,
        response_time: float,
        cost: Optional[float] = None,
        error: bool = False,
    ) -> UsageStatistics:
        with self._lock:
            self._requests += 1
            self._tokens += max(0, int(tokens))
            if error:
                self._errors += 1
            # incremental mean over all attempts
            self._avg_latency += (max(0.0, response_time) - self._avg_latency) / self._requests
            self._last_used = self._now()
            if self._track_cost and cost:
                self._cost += cost
            snap = self._snapshot_locked()

        if tokens > 10000:
            logger.warning("large_llm_request", tokens=tokens, cost_usd=cost)
        return snap

    def snapshot(self) -> UsageStatistics:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> UsageStatistics:
        return UsageStatistics(
            request_count=self._requests,
            token_count=self._tokens,
            average_response_time=self._avg_latency,
            error_count=self._errors,
            last_used=self._last_used,
            estimated_cost=self._cost if self._track_cost else None,
        )
