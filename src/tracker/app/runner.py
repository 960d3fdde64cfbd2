from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass

from tracker.core.config import TrackerConfig, load_config
from tracker.core.logging import get_logger, set_level
from tracker.core.types import Clock, utc_now
from tracker.features.correlation.service import CorrelationScanner
from tracker.features.feed.service import OnlineFeedClient
from tracker.features.feed.types import OnlineFeed
from tracker.features.persistence.duckdb_adapter import DuckDBAdapter
from tracker.features.persistence.service import SessionStore
from tracker.features.poller.service import PresencePoller
from tracker.features.scan_report.service import ScanConfig, ScanReport, ScanService
from tracker.features.scheduler.service import TaskScheduler

LOGGER_NAMES = (
    "tracker",
    "tracker.features.persistence.service",
    "tracker.features.poller.service",
    "tracker.features.correlation.service",
    "tracker.features.scan_report.service",
    "tracker.features.scheduler.service",
)


@dataclass(frozen=True)
class TrackerApp:
    cfg: TrackerConfig
    store: SessionStore
    poller: PresencePoller
    scheduler: TaskScheduler
    scans: ScanService


def build_app(
    cfg: TrackerConfig,
    *,
    feed: OnlineFeed | None = None,
    clock: Clock = utc_now,
    read_only: bool = False,
) -> TrackerApp:
    """
    Wire store, feed, poller, scheduler and scan service. The store is opened here.
    read_only=True is for one-off scans against a database no tracker process holds.
    """
    set_level(cfg.logging.level, *LOGGER_NAMES)

    store = SessionStore(
        adapter=DuckDBAdapter(
            cfg.storage.duckdb_path,
            clean_slate=cfg.storage.clean_slate and not read_only,
            read_only=read_only,
        )
    )
    store.open()

    if feed is None:
        feed = OnlineFeedClient(cfg.feed.url, timeout_s=cfg.feed.timeout_s)
    poller = PresencePoller(feed=feed, store=store, interval_s=cfg.poller.interval_s, clock=clock)
    scheduler = TaskScheduler([poller], clock=clock)

    scan_cfg = ScanConfig.from_mapping(cfg.raw.get("scan"))
    scanner = CorrelationScanner(store=store, strategy=scan_cfg.strategy, clock=clock)
    scans = ScanService(scanner=scanner, store=store, cfg=scan_cfg)

    return TrackerApp(cfg=cfg, store=store, poller=poller, scheduler=scheduler, scans=scans)


async def run_until_stopped(app: TrackerApp, stop: asyncio.Event) -> None:
    app.scheduler.start()
    try:
        await stop.wait()
    finally:
        await app.scheduler.stop()


async def _main_async(app: TrackerApp) -> None:
    logger = get_logger("tracker", app.cfg.logging.level)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows; Ctrl-C still raises KeyboardInterrupt
            pass

    logger.info("tracker_running", extra={"path": app.cfg.storage.duckdb_path})
    await run_until_stopped(app, stop)


def run(config_path: str) -> int:
    cfg = load_config(config_path)
    app = build_app(cfg)
    try:
        asyncio.run(_main_async(app))
    finally:
        app.store.close()
    return 0


def scan(
    config_path: str,
    target_name: str,
    *,
    window_s: float | None = None,
    max_results: int | None = None,
) -> ScanReport:
    cfg = load_config(config_path)
    app = build_app(cfg, read_only=True)
    try:
        return app.scans.scan(target_name, window_s=window_s, max_results=max_results)
    finally:
        app.store.close()
