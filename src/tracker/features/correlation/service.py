from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from tracker.core.logging import get_logger
from tracker.core.types import Clock, utc_now
from tracker.features.persistence.types import Actor, Session

from .intervals import correlate, to_intervals

STRATEGIES = ("query", "memory")


class TargetNotFoundError(LookupError):
    """
    The scan target has no recorded session history (or no actor record).
    """

    def __init__(self, target_name: str) -> None:
        super().__init__(f"No session history recorded for {target_name!r}")
        self.target_name = target_name


@dataclass(frozen=True, slots=True)
class CorrelationMatch:
    actor_name: str
    adjacent_count: int


class SessionReaderLike(Protocol):
    def find_actor_by_name(self, name: str) -> Actor | None: ...
    def list_sessions_by_actor(self, actor_id: int) -> list[Session]: ...
    def list_candidate_sessions(self, exclude_actor_id: int) -> dict[str, list[Session]]: ...
    def adjacent_transition_counts(
        self, actor_id: int, *, now: datetime, window_s: float, limit: int | None = None
    ) -> list[tuple[str, int]]: ...


class CorrelationScanner:
    """
    Finds actors that are never online together with the target but keep
    logging on/off right around the target's own transitions.

    strategy:
      - "query"  -> single self-join query in the store
      - "memory" -> load histories and run the pairwise scan in Python
    Both order ties by actor name ascending.
    """

    def __init__(
        self,
        *,
        store: SessionReaderLike,
        strategy: str = "query",
        clock: Clock = utc_now,
    ) -> None:
        strategy = (strategy or "").strip().lower()
        if strategy not in STRATEGIES:
            raise ValueError(f"Unsupported scan strategy={strategy!r}. Allowed={list(STRATEGIES)}")
        self.store = store
        self.strategy = strategy
        self.clock = clock
        self._logger = get_logger(__name__)

    def scan(
        self, target_name: str, window_s: float, max_results: int
    ) -> list[CorrelationMatch]:
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        if max_results < 1:
            raise ValueError("max_results must be >= 1")

        target = self.store.find_actor_by_name(target_name)
        if target is None:
            raise TargetNotFoundError(target_name)
        target_sessions = self.store.list_sessions_by_actor(target.id)
        if not target_sessions:
            raise TargetNotFoundError(target_name)

        now = self.clock()
        if self.strategy == "query":
            rows = self.store.adjacent_transition_counts(
                target.id, now=now, window_s=window_s, limit=max_results
            )
        else:
            candidates = {
                name: to_intervals(sessions, now=now)
                for name, sessions in self.store.list_candidate_sessions(target.id).items()
            }
            rows = correlate(
                to_intervals(target_sessions, now=now),
                candidates,
                timedelta(seconds=float(window_s)),
            )[:max_results]

        matches = [CorrelationMatch(actor_name=name, adjacent_count=n) for name, n in rows]
        self._logger.debug(
            "scan_complete",
            extra={"target": target_name, "strategy": self.strategy, "matches": len(matches)},
        )
        return matches
