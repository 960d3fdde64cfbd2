from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class FeedConfig:
    url: str
    timeout_s: float = 10.0


@dataclass(frozen=True)
class StorageConfig:
    duckdb_path: str
    clean_slate: bool = False


@dataclass(frozen=True)
class PollerConfig:
    interval_s: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class TrackerConfig:
    feed: FeedConfig
    storage: StorageConfig
    poller: PollerConfig
    logging: LoggingConfig
    raw: dict[str, Any]  # original parsed YAML (scan section is parsed by its feature)


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


def parse_config(data: dict[str, Any]) -> TrackerConfig:
    for key in ["feed", "storage"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    feed = data.get("feed") or {}
    storage = data.get("storage") or {}
    poller = data.get("poller") or {}
    logging_cfg = data.get("logging") or {}

    feed_cfg = FeedConfig(
        url=str(feed["url"]),
        timeout_s=float(feed.get("timeout_s", 10.0)),
    )
    if feed_cfg.timeout_s <= 0:
        raise ValueError("feed.timeout_s must be > 0")

    storage_cfg = StorageConfig(
        duckdb_path=str(storage["duckdb_path"]),
        clean_slate=bool(storage.get("clean_slate", False)),
    )

    poller_cfg = PollerConfig(interval_s=float(poller.get("interval_s", 10.0)))
    if poller_cfg.interval_s <= 0:
        raise ValueError("poller.interval_s must be > 0")

    log_cfg = LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper())

    return TrackerConfig(
        feed=feed_cfg,
        storage=storage_cfg,
        poller=poller_cfg,
        logging=log_cfg,
        raw=data,
    )


def load_config(path: str | Path) -> TrackerConfig:
    data = load_yaml(path)
    return parse_config(data)
