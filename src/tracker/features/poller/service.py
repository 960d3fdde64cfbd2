from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import duckdb

from tracker.core.logging import get_logger
from tracker.core.types import Clock, utc_now
from tracker.features.feed.types import FeedUnavailableError, OnlineFeed, OnlinePlayer
from tracker.features.persistence.types import Actor, Session


class SessionStoreLike(Protocol):
    """
    The slice of SessionStore the poller writes through.
    """

    def find_or_create_actor(
        self, name: str, level: int, vocation: str, country: str
    ) -> Actor: ...
    def find_active_session(self, actor_id: int) -> Session | None: ...
    def create_session(self, actor_id: int, login_at: datetime) -> Session: ...
    def close_session(self, session_id: int, logout_at: datetime) -> bool: ...


@dataclass(frozen=True, slots=True)
class RosterEntry:
    actor_id: int
    stats: tuple[int, str, str]


@dataclass(frozen=True)
class PollResult:
    """
    Outcome of one poll cycle. fetched=False means the feed was unavailable and
    nothing was touched.
    """

    fetched: bool
    online: int = 0
    opened: int = 0
    closed: int = 0
    updated: int = 0
    failed: int = 0


class PresencePoller:
    """
    Reconciles the online roster against the previous poll and opens/closes
    session intervals accordingly.

    The last-known roster (name -> actor_id and last written stats) lives on the
    instance: it starts empty, is replaced after every successful fetch, and is
    dropped by shutdown(). Store calls run in a worker thread, off the event loop.
    """

    name = "online-tracker"

    def __init__(
        self,
        *,
        feed: OnlineFeed,
        store: SessionStoreLike,
        interval_s: float = 10.0,
        clock: Clock = utc_now,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.feed = feed
        self.store = store
        self.interval_s = float(interval_s)
        self.clock = clock

        self._last_online: dict[str, RosterEntry] = {}
        self._logger = get_logger(__name__)

    @property
    def last_online(self) -> dict[str, int]:
        return {name: entry.actor_id for name, entry in self._last_online.items()}

    async def run_cycle(self) -> None:
        await self.poll_once()

    async def poll_once(self) -> PollResult:
        t0 = time.perf_counter()
        try:
            snapshot = await self.feed.fetch_online()
        except FeedUnavailableError as exc:
            # Keep the roster: a failed fetch is not "everyone logged off".
            self._logger.warning(
                "feed_unavailable",
                extra={"task": self.name, "error": str(exc)},
            )
            return PollResult(fetched=False, online=len(self._last_online))

        result = await asyncio.to_thread(self._reconcile, snapshot, now=self.clock())
        self._logger.info(
            "poll_complete",
            extra={
                "task": self.name,
                "online": result.online,
                "opened": result.opened,
                "closed": result.closed,
                "updated": result.updated,
                "failed": result.failed,
                "duration_ms": (time.perf_counter() - t0) * 1000.0,
            },
        )
        return result

    async def shutdown(self, at: datetime) -> None:
        """
        Force-close every session still referenced by the roster at `at`.
        """
        await asyncio.to_thread(self._close_roster, at)

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _close_roster(self, at: datetime) -> None:
        closed = 0
        failed = 0
        for name, entry in self._last_online.items():
            try:
                if self._close_active(entry.actor_id, at):
                    closed += 1
            except duckdb.Error as exc:
                failed += 1
                self._logger.error(
                    "session_close_failed",
                    extra={"task": self.name, "actor": name, "error": str(exc)},
                )
        self._last_online = {}
        self._logger.info(
            "sessions_force_closed",
            extra={"task": self.name, "closed": closed, "failed": failed},
        )

    def _reconcile(self, snapshot: list[OnlinePlayer], *, now: datetime) -> PollResult:
        current: dict[str, RosterEntry] = {}
        opened = 0
        closed = 0
        updated = 0
        failed = 0

        for player in snapshot:
            if player.name in current:
                continue
            stats = (player.level, player.vocation, player.country)

            known = self._last_online.get(player.name)
            if known is not None:
                current[player.name] = known
                if known.stats == stats:
                    continue
                # still online, stats changed
                try:
                    self.store.find_or_create_actor(player.name, *stats)
                except duckdb.Error as exc:
                    # cached stats stay stale so the next poll retries the update
                    failed += 1
                    self._logger.error(
                        "actor_update_failed",
                        extra={"task": self.name, "actor": player.name, "error": str(exc)},
                    )
                    continue
                current[player.name] = RosterEntry(actor_id=known.actor_id, stats=stats)
                updated += 1
                continue

            # offline -> online
            try:
                actor = self.store.find_or_create_actor(player.name, *stats)
            except duckdb.Error as exc:
                # Left out of the roster so the next poll retries it as new.
                failed += 1
                self._logger.error(
                    "actor_upsert_failed",
                    extra={"task": self.name, "actor": player.name, "error": str(exc)},
                )
                continue

            current[player.name] = RosterEntry(actor_id=actor.id, stats=stats)
            try:
                if self.store.find_active_session(actor.id) is None:
                    self.store.create_session(actor.id, now)
                    opened += 1
            except duckdb.Error as exc:
                failed += 1
                self._logger.error(
                    "session_open_failed",
                    extra={"task": self.name, "actor": player.name, "error": str(exc)},
                )

        # online -> offline
        for name, entry in self._last_online.items():
            if name in current:
                continue
            try:
                if self._close_active(entry.actor_id, now):
                    closed += 1
                else:
                    self._logger.debug(
                        "no_active_session",
                        extra={"task": self.name, "actor": name},
                    )
            except duckdb.Error as exc:
                failed += 1
                self._logger.error(
                    "session_close_failed",
                    extra={"task": self.name, "actor": name, "error": str(exc)},
                )

        self._last_online = current
        return PollResult(
            fetched=True,
            online=len(current),
            opened=opened,
            closed=closed,
            updated=updated,
            failed=failed,
        )

    def _close_active(self, actor_id: int, at: datetime) -> bool:
        active = self.store.find_active_session(actor_id)
        if active is None:
            return False
        return self.store.close_session(active.id, at)
