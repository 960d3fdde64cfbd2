from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from tracker.core.logging import get_logger
from tracker.features.confidence.service import (
    ConfidenceClassifier,
    ConfidenceThresholds,
    ConfidenceTier,
    ScanResult,
)
from tracker.features.correlation.service import CorrelationMatch, TargetNotFoundError


@dataclass(frozen=True)
class ScanConfig:
    adjacent_window_s: float = 60.0
    max_results: int = 20
    strategy: str = "query"
    thresholds: ConfidenceThresholds = field(default_factory=ConfidenceThresholds)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> ScanConfig:
        raw = raw or {}
        cfg = cls(
            adjacent_window_s=float(raw.get("adjacent_window_s", 60.0)),
            max_results=int(raw.get("max_results", 20)),
            strategy=str(raw.get("strategy", "query")).strip().lower(),
            thresholds=ConfidenceThresholds.from_mapping(raw.get("thresholds")),
        )
        if cfg.adjacent_window_s <= 0:
            raise ValueError("scan.adjacent_window_s must be > 0")
        if cfg.max_results < 1:
            raise ValueError("scan.max_results must be >= 1")
        return cfg


class ScannerLike(Protocol):
    def scan(
        self, target_name: str, window_s: float, max_results: int
    ) -> list[CorrelationMatch]: ...


class ActorCounter(Protocol):
    def count_actors(self) -> int: ...


@dataclass(frozen=True)
class ScanReport:
    target: str
    results: list[ScanResult]
    raw: list[CorrelationMatch]
    actors_analyzed: int
    duration_s: float

    @property
    def is_empty(self) -> bool:
        return not self.raw

    def by_tier(self) -> dict[ConfidenceTier, list[ScanResult]]:
        """
        Classified results grouped per tier, strongest tier first; empty tiers omitted.
        """
        grouped: dict[ConfidenceTier, list[ScanResult]] = {}
        for tier in sorted(ConfidenceTier, reverse=True):
            items = [r for r in self.results if r.confidence_tier == tier]
            if items:
                grouped[tier] = items
        return grouped


class ScanService:
    """
    Entry point for on-demand alt scans: raw correlation, then tiering.
    Raises TargetNotFoundError when the target was never seen online.
    """

    def __init__(
        self,
        *,
        scanner: ScannerLike,
        store: ActorCounter,
        cfg: ScanConfig | None = None,
    ) -> None:
        self.cfg = cfg or ScanConfig()
        self.scanner = scanner
        self.store = store
        self.classifier = ConfidenceClassifier(self.cfg.thresholds)
        self._logger = get_logger(__name__)

    def scan(
        self,
        target_name: str,
        window_s: float | None = None,
        max_results: int | None = None,
    ) -> ScanReport:
        window = self.cfg.adjacent_window_s if window_s is None else float(window_s)
        limit = self.cfg.max_results if max_results is None else int(max_results)

        t0 = time.perf_counter()
        try:
            raw = self.scanner.scan(target_name, window, limit)
        except TargetNotFoundError:
            self._logger.info("scan_target_not_found", extra={"target": target_name})
            raise

        results = self.classifier.classify_matches(raw)
        report = ScanReport(
            target=target_name,
            results=results,
            raw=raw,
            actors_analyzed=self.store.count_actors(),
            duration_s=time.perf_counter() - t0,
        )
        self._logger.info(
            "scan_complete",
            extra={
                "target": target_name,
                "matches": len(results),
                "duration_ms": report.duration_s * 1000.0,
            },
        )
        return report
