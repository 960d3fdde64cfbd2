from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from tracker.features.persistence.types import Session


@dataclass(frozen=True, slots=True)
class Interval:
    """
    Half-open presence interval [start, end).
    """

    start: datetime
    end: datetime

    @classmethod
    def from_session(cls, session: Session, *, now: datetime) -> Interval:
        # open sessions extend to "now"
        return cls(start=session.login_at, end=session.end_or(now))


def to_intervals(sessions: Iterable[Session], *, now: datetime) -> list[Interval]:
    return [Interval.from_session(s, now=now) for s in sessions]


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def is_adjacent(target: Interval, candidate: Interval, window: timedelta) -> bool:
    """
    True when one side logs off within `window` of the other logging on,
    in either direction.
    """
    return abs(candidate.end - target.start) < window or abs(target.end - candidate.start) < window


def any_overlap(target: Sequence[Interval], candidate: Sequence[Interval]) -> bool:
    return any(overlaps(t, c) for t in target for c in candidate)


def count_adjacent(
    target: Sequence[Interval], candidate: Sequence[Interval], window: timedelta
) -> int:
    return sum(1 for t in target for c in candidate if is_adjacent(t, c, window))


def correlate(
    target: Sequence[Interval],
    candidates: Mapping[str, Sequence[Interval]],
    window: timedelta,
) -> list[tuple[str, int]]:
    """
    Exact pairwise scan. A candidate with any overlap is excluded outright;
    survivors with zero adjacent transitions are dropped. Sorted by count desc,
    then name asc.
    """
    out: list[tuple[str, int]] = []
    for name, intervals in candidates.items():
        if any_overlap(target, intervals):
            continue
        n = count_adjacent(target, intervals, window)
        if n > 0:
            out.append((name, n))
    out.sort(key=lambda item: (-item[1], item[0]))
    return out
