from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Actor:
    """
    A tracked character. Stat fields hold the latest observed values.
    """

    id: int
    name: str
    level: int = 0
    vocation: str = ""
    country: str = ""


@dataclass(frozen=True, slots=True)
class Session:
    """
    One presence interval [login_at, logout_at). logout_at=None means still open.
    """

    id: int
    actor_id: int
    login_at: datetime
    logout_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.logout_at is None

    def end_or(self, now: datetime) -> datetime:
        return self.logout_at if self.logout_at is not None else now
