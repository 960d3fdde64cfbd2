from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from tracker.features.correlation.service import CorrelationMatch


class ConfidenceTier(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    VERY_HIGH = 4

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ConfidenceThresholds:
    """
    Minimum adjacent-transition count for each tier. Must be strictly ascending.
    Counts below `low` get no tier at all.
    """

    low: int = 3
    medium: int = 5
    high: int = 10
    very_high: int = 15

    def __post_init__(self) -> None:
        values = (self.low, self.medium, self.high, self.very_high)
        if self.low < 1:
            raise ValueError("thresholds.low must be >= 1")
        if any(a >= b for a, b in zip(values, values[1:])):
            raise ValueError(
                "thresholds must be strictly ascending: low < medium < high < very_high "
                f"(got {values})"
            )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> ConfidenceThresholds:
        raw = raw or {}
        return cls(
            low=int(raw.get("low", 3)),
            medium=int(raw.get("medium", 5)),
            high=int(raw.get("high", 10)),
            very_high=int(raw.get("very_high", 15)),
        )


@dataclass(frozen=True, slots=True)
class ScanResult:
    actor_name: str
    adjacent_transition_count: int
    confidence_tier: ConfidenceTier


def classify(count: int, thresholds: ConfidenceThresholds) -> ConfidenceTier | None:
    if count >= thresholds.very_high:
        return ConfidenceTier.VERY_HIGH
    if count >= thresholds.high:
        return ConfidenceTier.HIGH
    if count >= thresholds.medium:
        return ConfidenceTier.MEDIUM
    if count >= thresholds.low:
        return ConfidenceTier.LOW
    return None


class ConfidenceClassifier:
    def __init__(self, thresholds: ConfidenceThresholds | None = None) -> None:
        self.thresholds = thresholds or ConfidenceThresholds()

    def classify(self, count: int) -> ConfidenceTier | None:
        return classify(count, self.thresholds)

    def classify_matches(self, matches: Iterable[CorrelationMatch]) -> list[ScanResult]:
        """
        Keeps input order; matches below the lowest tier are silently dropped.
        """
        out: list[ScanResult] = []
        for m in matches:
            tier = self.classify(m.adjacent_count)
            if tier is None:
                continue
            out.append(
                ScanResult(
                    actor_name=m.actor_name,
                    adjacent_transition_count=m.adjacent_count,
                    confidence_tier=tier,
                )
            )
        return out
