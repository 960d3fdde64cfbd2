from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from .types import FeedUnavailableError, OnlinePlayer


def parse_online_payload(payload: Any) -> list[OnlinePlayer]:
    """
    Accepts either a bare list of players or {"players": [...]}.
    Entries without a name are skipped; missing stats fall back to empty values.
    """
    if isinstance(payload, dict):
        payload = payload.get("players")
    if not isinstance(payload, list):
        raise FeedUnavailableError(
            f"Unexpected online feed payload type: {type(payload).__name__}"
        )

    players: list[OnlinePlayer] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not name:
            continue
        try:
            level = int(item.get("level") or 0)
        except (TypeError, ValueError):
            level = 0
        players.append(
            OnlinePlayer(
                name=str(name),
                level=level,
                vocation=str(item.get("vocation") or ""),
                country=str(item.get("country") or ""),
            )
        )
    return players


class OnlineFeedClient:
    """
    HTTP client for the "who is online" snapshot endpoint.
    """

    def __init__(self, url: str, *, timeout_s: float = 10.0) -> None:
        self.url = url
        self.timeout_s = float(timeout_s)

    async def fetch_online(self) -> list[OnlinePlayer]:
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url) as resp:
                    if resp.status != 200:
                        raise FeedUnavailableError(f"Online feed returned status {resp.status}")
                    text = await resp.text()
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FeedUnavailableError(f"Failed to fetch online feed: {exc!r}") from exc

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FeedUnavailableError(f"Failed to decode online feed: {exc}") from exc
        return parse_online_payload(payload)
