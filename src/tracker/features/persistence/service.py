from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from tracker.core.logging import get_logger
from tracker.core.types import ensure_utc, to_naive_utc

from .duckdb_adapter import DuckDBAdapter
from .schema import ACTORS_TABLE_NAME, SESSIONS_TABLE_NAME
from .types import Actor, Session

_SESSION_COLUMNS = "id, actor_id, login_at, logout_at"
_ACTOR_COLUMNS = "id, name, level, vocation, country"

ADJACENT_TRANSITIONS_SQL = f"""
WITH target AS (
    SELECT login_at AS t_start, COALESCE(logout_at, CAST($2 AS TIMESTAMP)) AS t_end
    FROM {SESSIONS_TABLE_NAME}
    WHERE actor_id = $1
),
candidate AS (
    SELECT actor_id, login_at AS c_start, COALESCE(logout_at, CAST($2 AS TIMESTAMP)) AS c_end
    FROM {SESSIONS_TABLE_NAME}
    WHERE actor_id <> $1
),
overlapping AS (
    SELECT DISTINCT c.actor_id
    FROM candidate c
    JOIN target t ON c.c_start < t.t_end AND t.t_start < c.c_end
),
adjacent AS (
    SELECT c.actor_id, COUNT(*) AS adjacent_count
    FROM candidate c
    JOIN target t
      ON abs(epoch_us(c.c_end) - epoch_us(t.t_start)) < $3
      OR abs(epoch_us(t.t_end) - epoch_us(c.c_start)) < $3
    WHERE c.actor_id NOT IN (SELECT actor_id FROM overlapping)
    GROUP BY c.actor_id
)
SELECT a.name, adj.adjacent_count
FROM adjacent adj
JOIN {ACTORS_TABLE_NAME} a ON a.id = adj.actor_id
ORDER BY adj.adjacent_count DESC, a.name ASC
"""


def _to_session(row: tuple) -> Session:
    return Session(
        id=int(row[0]),
        actor_id=int(row[1]),
        login_at=ensure_utc(row[2]),
        logout_at=ensure_utc(row[3]) if row[3] is not None else None,
    )


def _to_actor(row: tuple) -> Actor:
    return Actor(
        id=int(row[0]),
        name=str(row[1]),
        level=int(row[2]),
        vocation=str(row[3]),
        country=str(row[4]),
    )


class SessionStore:
    """
    Durable actor/session storage on DuckDB.

    Each method is one independent statement (or read-then-write on a single
    row); nothing here batches several mutations into one transaction.
    """

    def __init__(self, *, adapter: DuckDBAdapter) -> None:
        self.adapter = adapter
        self._logger = get_logger(__name__)

    def open(self) -> None:
        if self.adapter.is_open:
            return
        self.adapter.open()
        self._logger.info("store_opened", extra={"path": self.adapter.path})

    def close(self) -> None:
        self.adapter.close()

    # ----------------------------
    # Actors
    # ----------------------------
    def find_actor_by_name(self, name: str) -> Actor | None:
        row = self.adapter.fetchone(
            f"SELECT {_ACTOR_COLUMNS} FROM {ACTORS_TABLE_NAME} WHERE name = ?",
            [name],
        )
        return _to_actor(row) if row else None

    def find_or_create_actor(self, name: str, level: int, vocation: str, country: str) -> Actor:
        """
        Returns the actor for `name`, creating it on first sight and overwriting
        stale stat fields in place.
        """
        existing = self.find_actor_by_name(name)
        if existing is not None:
            if (existing.level, existing.vocation, existing.country) != (level, vocation, country):
                self.adapter.fetchall(
                    f"UPDATE {ACTORS_TABLE_NAME} SET level = ?, vocation = ?, country = ? "
                    "WHERE id = ?",
                    [int(level), vocation, country, existing.id],
                )
                return Actor(
                    id=existing.id, name=name, level=int(level), vocation=vocation, country=country
                )
            return existing

        row = self.adapter.fetchone(
            f"INSERT INTO {ACTORS_TABLE_NAME} (name, level, vocation, country) "
            "VALUES (?, ?, ?, ?) RETURNING id",
            [name, int(level), vocation, country],
        )
        if row is None:
            raise RuntimeError(f"Insert of actor {name!r} returned no id")
        return Actor(id=int(row[0]), name=name, level=int(level), vocation=vocation, country=country)

    def count_actors(self) -> int:
        res = self.adapter.fetchone(f"SELECT COUNT(*) FROM {ACTORS_TABLE_NAME}")
        return int(res[0]) if res else 0

    # ----------------------------
    # Sessions
    # ----------------------------
    def find_active_session(self, actor_id: int) -> Session | None:
        row = self.adapter.fetchone(
            f"SELECT {_SESSION_COLUMNS} FROM {SESSIONS_TABLE_NAME} "
            "WHERE actor_id = ? AND logout_at IS NULL "
            "ORDER BY login_at DESC LIMIT 1",
            [actor_id],
        )
        return _to_session(row) if row else None

    def create_session(self, actor_id: int, login_at: datetime) -> Session:
        row = self.adapter.fetchone(
            f"INSERT INTO {SESSIONS_TABLE_NAME} (actor_id, login_at) VALUES (?, ?) RETURNING id",
            [actor_id, to_naive_utc(login_at)],
        )
        if row is None:
            raise RuntimeError(f"Insert of session for actor_id={actor_id} returned no id")
        return Session(id=int(row[0]), actor_id=actor_id, login_at=ensure_utc(login_at))

    def close_session(self, session_id: int, logout_at: datetime) -> bool:
        """
        Close an open session. Returns False (no-op) when the session is missing,
        already closed, or would end at or before its own login.
        """
        row = self.adapter.fetchone(
            f"UPDATE {SESSIONS_TABLE_NAME} SET logout_at = ? "
            "WHERE id = ? AND logout_at IS NULL AND login_at < ? RETURNING id",
            [to_naive_utc(logout_at), session_id, to_naive_utc(logout_at)],
        )
        return row is not None

    def list_sessions_by_actor(self, actor_id: int) -> list[Session]:
        rows = self.adapter.fetchall(
            f"SELECT {_SESSION_COLUMNS} FROM {SESSIONS_TABLE_NAME} "
            "WHERE actor_id = ? ORDER BY login_at ASC, id ASC",
            [actor_id],
        )
        return [_to_session(r) for r in rows]

    def list_sessions_by_name(self, name: str) -> list[Session]:
        actor = self.find_actor_by_name(name)
        if actor is None:
            return []
        return self.list_sessions_by_actor(actor.id)

    def list_candidate_sessions(self, exclude_actor_id: int) -> dict[str, list[Session]]:
        """
        Every other actor's full session history, keyed by actor name.
        """
        rows = self.adapter.fetchall(
            f"SELECT a.name, s.id, s.actor_id, s.login_at, s.logout_at "
            f"FROM {SESSIONS_TABLE_NAME} s JOIN {ACTORS_TABLE_NAME} a ON a.id = s.actor_id "
            "WHERE s.actor_id <> ? ORDER BY a.name ASC, s.login_at ASC, s.id ASC",
            [exclude_actor_id],
        )
        grouped: dict[str, list[Session]] = defaultdict(list)
        for r in rows:
            grouped[str(r[0])].append(_to_session(r[1:]))
        return dict(grouped)

    def count_open_sessions(self) -> int:
        res = self.adapter.fetchone(
            f"SELECT COUNT(*) FROM {SESSIONS_TABLE_NAME} WHERE logout_at IS NULL"
        )
        return int(res[0]) if res else 0

    # ----------------------------
    # Correlation query
    # ----------------------------
    def adjacent_transition_counts(
        self,
        actor_id: int,
        *,
        now: datetime,
        window_s: float,
        limit: int | None = None,
    ) -> list[tuple[str, int]]:
        """
        Store-level form of the alt scan: (name, adjacent_count) for every actor
        that never overlaps `actor_id` and has at least one adjacent transition,
        sorted by count desc then name asc, at most `limit` rows.
        Open sessions extend to `now`.
        """
        window_us = int(round(float(window_s) * 1_000_000))
        sql = ADJACENT_TRANSITIONS_SQL
        params: list = [actor_id, to_naive_utc(now), window_us]
        if limit is not None:
            if limit < 1:
                raise ValueError("limit must be >= 1")
            sql += "LIMIT $4\n"
            params.append(int(limit))
        rows = self.adapter.fetchall(sql, params)
        return [(str(name), int(count)) for name, count in rows]
