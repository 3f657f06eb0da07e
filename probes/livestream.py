"""
probes/livestream.py
Asks the Kick public API whether a channel is currently streaming.
Every failure mode collapses to "offline" so the evaluation loop never sees an exception.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

log = logging.getLogger("relaybot.livestream")

KICK_API_BASE = "https://kick.com/api/v1/channels/"
USER_AGENT    = "LiveRelayBot/1.0"


class LivestreamProbe:
    """Single-channel Kick live check with a hard timeout."""

    def __init__(self, channel_slug: str, timeout: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.channel_slug = channel_slug
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def url(self) -> str:
        return KICK_API_BASE + quote(self.channel_slug, safe="")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def is_live(self) -> bool:
        """True iff the channel has an active livestream record. Never raises."""
        try:
            return await asyncio.wait_for(self._fetch(), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning("Kick API request for %s timed out after %.1fs.",
                        self.channel_slug, self.timeout)
            return False
        except Exception as e:
            log.error("Failed to check Kick live status for %s: %s", self.channel_slug, e)
            return False

    async def _fetch(self) -> bool:
        session = await self._get_session()
        async with session.get(self.url) as resp:
            if resp.status < 200 or resp.status >= 300:
                log.error("Kick API request for %s failed with status %s",
                          self.channel_slug, resp.status)
                return False
            data = await resp.json(content_type=None)
        return livestream_is_active(data)


def livestream_is_active(data: Any) -> bool:
    """Interpret a Kick channel payload.

    A missing or empty ``livestream`` record means offline. A record with no
    ``is_live`` flag (or a null one) counts as live.
    """
    if not isinstance(data, dict):
        return False
    livestream = data.get("livestream")
    if not livestream:
        return False
    if not isinstance(livestream, dict):
        return True
    is_live = livestream.get("is_live")
    return True if is_live is None else bool(is_live)
