from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime, timedelta

import duckdb
import pytest

from tracker.features.feed.types import FeedUnavailableError, OnlinePlayer
from tracker.features.persistence.duckdb_adapter import DuckDBAdapter
from tracker.features.persistence.service import SessionStore
from tracker.features.poller.service import PresencePoller

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class DummyClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class DummyFeed:
    """
    Serves queued snapshots; an exception instance in the queue is raised instead.
    """

    def __init__(self) -> None:
        self.queue: list[list[OnlinePlayer] | Exception] = []

    def push(self, *names: str) -> None:
        self.queue.append([OnlinePlayer(name=n, level=100, vocation="Knight") for n in names])

    def push_players(self, *players: OnlinePlayer) -> None:
        self.queue.append(list(players))

    def fail(self) -> None:
        self.queue.append(FeedUnavailableError("feed down"))

    async def fetch_online(self) -> list[OnlinePlayer]:
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingStore:
    """
    Wraps a real SessionStore and records every call the poller makes.
    """

    def __init__(self, inner: SessionStore, *, broken: set[str] | None = None) -> None:
        self.inner = inner
        self.calls: list[str] = []
        self.broken = broken or set()

    def find_or_create_actor(self, name, level, vocation, country):
        self.calls.append("find_or_create_actor")
        if name in self.broken:
            raise duckdb.Error(f"write failed for {name}")
        return self.inner.find_or_create_actor(name, level, vocation, country)

    def find_active_session(self, actor_id):
        self.calls.append("find_active_session")
        return self.inner.find_active_session(actor_id)

    def create_session(self, actor_id, login_at):
        self.calls.append("create_session")
        return self.inner.create_session(actor_id, login_at)

    def close_session(self, session_id, logout_at):
        self.calls.append("close_session")
        return self.inner.close_session(session_id, logout_at)


@pytest.fixture
def store(tmp_path):
    s = SessionStore(adapter=DuckDBAdapter(str(tmp_path / "poller.duckdb"), clean_slate=True))
    s.open()
    yield s
    s.close()


def _poller(store, feed: DummyFeed, clock: DummyClock) -> PresencePoller:
    return PresencePoller(feed=feed, store=store, interval_s=10, clock=clock)


def test_login_then_logout_records_one_closed_session(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    poller = _poller(store, feed, clock)

    feed.push("Bubble")
    r1 = asyncio.run(poller.poll_once())
    assert (r1.fetched, r1.online, r1.opened) == (True, 1, 1)

    clock.advance(30)
    feed.push()
    r2 = asyncio.run(poller.poll_once())
    assert (r2.online, r2.closed) == (0, 1)

    sessions = store.list_sessions_by_name("Bubble")
    assert len(sessions) == 1
    assert sessions[0].login_at == T0
    assert sessions[0].logout_at == T0 + timedelta(seconds=30)
    assert poller.last_online == {}


def test_unchanged_snapshot_makes_no_store_calls(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    recording = RecordingStore(store)
    poller = _poller(recording, feed, clock)

    feed.push("A", "B")
    asyncio.run(poller.poll_once())
    recording.calls.clear()

    clock.advance(10)
    feed.push("B", "A")
    r = asyncio.run(poller.poll_once())

    assert recording.calls == []
    assert (r.opened, r.closed) == (0, 0)
    assert store.count_open_sessions() == 2


def test_feed_failure_keeps_roster_and_sessions(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    poller = _poller(store, feed, clock)

    feed.push("A")
    asyncio.run(poller.poll_once())

    clock.advance(10)
    feed.fail()
    r = asyncio.run(poller.poll_once())

    assert r.fetched is False
    assert r.online == 1
    assert "A" in poller.last_online
    assert store.count_open_sessions() == 1

    # recovery: still online, so nothing new is opened
    clock.advance(10)
    feed.push("A")
    r = asyncio.run(poller.poll_once())
    assert (r.opened, r.closed) == (0, 0)
    assert len(store.list_sessions_by_name("A")) == 1


def test_store_failure_on_one_actor_does_not_stop_others(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    recording = RecordingStore(store, broken={"Broken"})
    poller = _poller(recording, feed, clock)

    feed.push("A", "Broken", "C")
    r = asyncio.run(poller.poll_once())

    assert (r.online, r.opened, r.failed) == (2, 2, 1)
    assert sorted(poller.last_online) == ["A", "C"]

    # the failed actor is retried as new on the next poll
    recording.broken.clear()
    clock.advance(10)
    feed.push("A", "Broken", "C")
    r = asyncio.run(poller.poll_once())
    assert (r.online, r.opened, r.failed) == (3, 1, 0)


def test_existing_open_session_is_reused_after_restart(store) -> None:
    actor = store.find_or_create_actor("A", 1, "", "")
    store.create_session(actor.id, T0 - timedelta(minutes=5))

    feed = DummyFeed()
    poller = _poller(store, feed, DummyClock(T0))
    feed.push("A")
    r = asyncio.run(poller.poll_once())

    assert r.opened == 0
    assert store.count_open_sessions() == 1
    assert store.list_sessions_by_name("A")[0].login_at == T0 - timedelta(minutes=5)


def test_duplicate_names_in_snapshot_open_one_session(store) -> None:
    feed = DummyFeed()
    poller = _poller(store, feed, DummyClock(T0))

    feed.push("A", "A")
    r = asyncio.run(poller.poll_once())

    assert (r.online, r.opened) == (1, 1)
    assert store.count_open_sessions() == 1


def test_shutdown_force_closes_roster_at_given_instant(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    poller = _poller(store, feed, clock)

    feed.push("A", "B", "C")
    asyncio.run(poller.poll_once())

    stop_at = T0 + timedelta(minutes=2)
    asyncio.run(poller.shutdown(stop_at))

    assert store.count_open_sessions() == 0
    assert poller.last_online == {}
    for name in ("A", "B", "C"):
        (s,) = store.list_sessions_by_name(name)
        assert s.logout_at == stop_at


def test_sessions_never_overlap_across_flapping_presence(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    poller = _poller(store, feed, clock)

    pattern = [("A", "B"), ("A",), (), ("B",), ("A", "B"), ("A",), ()]
    for names in pattern:
        feed.push(*names)
        asyncio.run(poller.poll_once())
        clock.advance(10)

    for name in ("A", "B"):
        sessions = store.list_sessions_by_name(name)
        assert sum(1 for s in sessions if s.is_open) <= 1
        for prev, nxt in zip(sessions, sessions[1:]):
            assert prev.logout_at is not None
            assert prev.login_at < prev.logout_at <= nxt.login_at

    assert len(store.list_sessions_by_name("A")) == 2
    assert len(store.list_sessions_by_name("B")) == 2


def test_interval_must_be_positive(store) -> None:
    with pytest.raises(ValueError, match="interval_s"):
        PresencePoller(feed=DummyFeed(), store=store, interval_s=0)


def test_stat_change_while_online_is_written(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    recording = RecordingStore(store)
    poller = _poller(recording, feed, clock)

    feed.push_players(OnlinePlayer(name="A", level=100, vocation="Knight", country="BR"))
    asyncio.run(poller.poll_once())

    clock.advance(10)
    feed.push_players(OnlinePlayer(name="A", level=101, vocation="Elite Knight", country="BR"))
    r = asyncio.run(poller.poll_once())

    assert (r.opened, r.closed, r.updated) == (0, 0, 1)
    actor = store.find_actor_by_name("A")
    assert actor is not None
    assert (actor.level, actor.vocation) == (101, "Elite Knight")
    assert store.count_open_sessions() == 1

    # new stats are now the cached ones: no further writes
    recording.calls.clear()
    clock.advance(10)
    feed.push_players(OnlinePlayer(name="A", level=101, vocation="Elite Knight", country="BR"))
    r = asyncio.run(poller.poll_once())
    assert recording.calls == []
    assert r.updated == 0


def test_failed_stat_update_is_retried_next_poll(store) -> None:
    feed = DummyFeed()
    clock = DummyClock(T0)
    recording = RecordingStore(store)
    poller = _poller(recording, feed, clock)

    feed.push_players(OnlinePlayer(name="A", level=100))
    asyncio.run(poller.poll_once())

    recording.broken.add("A")
    feed.push_players(OnlinePlayer(name="A", level=101))
    r = asyncio.run(poller.poll_once())
    assert (r.online, r.updated, r.failed) == (1, 0, 1)
    assert "A" in poller.last_online

    recording.broken.clear()
    feed.push_players(OnlinePlayer(name="A", level=101))
    r = asyncio.run(poller.poll_once())
    assert (r.updated, r.failed) == (1, 0)
    assert store.find_actor_by_name("A").level == 101


def test_store_work_does_not_block_event_loop(store) -> None:
    class SlowStore(RecordingStore):
        def find_or_create_actor(self, name, level, vocation, country):
            time.sleep(0.2)
            return super().find_or_create_actor(name, level, vocation, country)

    feed = DummyFeed()
    poller = _poller(SlowStore(store), feed, DummyClock(T0))
    feed.push("A")

    async def scenario() -> int:
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        t = asyncio.create_task(ticker())
        await poller.poll_once()
        t.cancel()
        return ticks

    assert asyncio.run(scenario()) >= 5
    assert store.count_open_sessions() == 1
