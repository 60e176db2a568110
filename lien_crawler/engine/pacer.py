"""Per-jurisdiction request cadence and page budgets."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Deque

from ..config import JurisdictionProfile, PacingConfig
from ..errors import BudgetExhausted, ProfileConfigurationError

WINDOW_SECONDS = 60.0


@dataclass(slots=True)
class _JurisdictionBudget:
    pacing: PacingConfig
    window: Deque[float] = field(default_factory=deque)
    last_request: float | None = None
    pages_used: int = 0


class Pacer:
    """Sliding-window rate limiter keyed by jurisdiction id.

    ``acquire`` blocks until the jurisdiction may issue another request:
    at most ``max_requests_per_minute`` requests in any 60 second window and
    at least ``between_requests_ms`` between consecutive requests.
    ``acquire_page`` additionally counts a results page against
    ``max_pages_per_run`` and raises ``BudgetExhausted`` once it is spent.
    Windows and page counters of different jurisdictions never interact.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._budgets: dict[str, _JurisdictionBudget] = {}

    def register(self, profile: JurisdictionProfile) -> None:
        """Install (or refresh) pacing parameters, keeping any live window."""

        with self._lock:
            budget = self._budgets.get(profile.id)
            if budget is None:
                self._budgets[profile.id] = _JurisdictionBudget(pacing=profile.pacing)
            else:
                budget.pacing = profile.pacing

    def reset_run(self) -> None:
        """Start a new run: page counters go back to zero."""

        with self._lock:
            for budget in self._budgets.values():
                budget.pages_used = 0

    def pages_used(self, jurisdiction_id: str) -> int:
        with self._lock:
            return self._budget(jurisdiction_id).pages_used

    # ------------------------------------------------------------------
    def acquire(self, jurisdiction_id: str) -> float:
        """Block until a request is permitted; return seconds spent waiting."""

        waited = 0.0
        while True:
            with self._lock:
                budget = self._budget(jurisdiction_id)
                now = self._clock()
                delay = self._required_delay(budget, now)
                if delay <= 0:
                    budget.window.append(now)
                    budget.last_request = now
                    return waited
            self._sleep(delay)
            waited += delay

    def acquire_page(self, jurisdiction_id: str) -> float:
        with self._lock:
            budget = self._budget(jurisdiction_id)
            if budget.pages_used >= budget.pacing.max_pages_per_run:
                raise BudgetExhausted(jurisdiction_id, budget.pacing.max_pages_per_run)
            budget.pages_used += 1
        return self.acquire(jurisdiction_id)

    # ------------------------------------------------------------------
    def _budget(self, jurisdiction_id: str) -> _JurisdictionBudget:
        try:
            return self._budgets[jurisdiction_id]
        except KeyError:
            raise ProfileConfigurationError(
                f"Jurisdiction {jurisdiction_id} was not registered with the pacer"
            ) from None

    @staticmethod
    def _required_delay(budget: _JurisdictionBudget, now: float) -> float:
        window = budget.window
        while window and now - window[0] >= WINDOW_SECONDS:
            window.popleft()
        delay = 0.0
        if len(window) >= budget.pacing.max_requests_per_minute:
            delay = window[0] + WINDOW_SECONDS - now
        if budget.last_request is not None:
            spacing = budget.pacing.between_requests_ms / 1000.0
            delay = max(delay, budget.last_request + spacing - now)
        return delay


__all__ = ["Pacer", "WINDOW_SECONDS"]
