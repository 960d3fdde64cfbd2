from __future__ import annotations

ACTORS_TABLE_NAME = "actors"
SESSIONS_TABLE_NAME = "sessions"

SEQUENCES_DDL = [
    "CREATE SEQUENCE IF NOT EXISTS seq_actor_id START 1;",
    "CREATE SEQUENCE IF NOT EXISTS seq_session_id START 1;",
]

ACTORS_DDL = f"""
CREATE TABLE IF NOT EXISTS {ACTORS_TABLE_NAME} (
    id BIGINT PRIMARY KEY DEFAULT nextval('seq_actor_id'),
    name TEXT NOT NULL UNIQUE,

    level INTEGER NOT NULL DEFAULT 0,
    vocation TEXT NOT NULL DEFAULT '',
    country TEXT NOT NULL DEFAULT ''
);
"""

# logout_at NULL = open session. Timestamps are naive UTC.
SESSIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS {SESSIONS_TABLE_NAME} (
    id BIGINT PRIMARY KEY DEFAULT nextval('seq_session_id'),
    actor_id BIGINT NOT NULL,

    login_at TIMESTAMP NOT NULL,
    logout_at TIMESTAMP
);
"""

# logout_at is left unindexed: it is the column closes update in place.
SESSIONS_INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_sessions_actor_login "
    f"ON {SESSIONS_TABLE_NAME}(actor_id, login_at);",
]


def create_schema(conn) -> None:
    """
    Create sequences/tables/indexes. No migrations. Safe to call on every start.
    """
    for ddl in SEQUENCES_DDL:
        conn.execute(ddl)
    conn.execute(ACTORS_DDL)
    conn.execute(SESSIONS_DDL)
    for ddl in SESSIONS_INDEXES:
        conn.execute(ddl)
