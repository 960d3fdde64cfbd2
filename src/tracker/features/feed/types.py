from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class OnlinePlayer:
    name: str
    level: int = 0
    vocation: str = ""
    country: str = ""


class FeedUnavailableError(RuntimeError):
    """
    The online snapshot could not be fetched. Never means "nobody is online".
    """


class OnlineFeed(Protocol):
    async def fetch_online(self) -> list[OnlinePlayer]: ...
