"""
probes/presence.py
Checks whether the watched user is sitting in the target voice channel.
"""

from __future__ import annotations
import logging
from typing import Optional

import discord

log = logging.getLogger("relaybot.presence")


class PresenceProbe:
    def __init__(self, user_id: int, voice_channel_id: int):
        self.user_id = user_id
        self.voice_channel_id = voice_channel_id

    async def _resolve_member(self, guild: discord.Guild) -> Optional[discord.Member]:
        member = guild.get_member(self.user_id)
        if member is not None:
            return member
        return await guild.fetch_member(self.user_id)

    async def is_user_in_target_voice(self, guild: discord.Guild) -> bool:
        """Fail-closed: any lookup error counts as "not present"."""
        try:
            member = await self._resolve_member(guild)
        except discord.NotFound:
            log.warning("Target member %s not found in guild %s.", self.user_id, guild.id)
            return False
        except discord.DiscordException as e:
            log.error("Unable to fetch target member %s: %s", self.user_id, e)
            return False

        voice = member.voice if member else None
        if voice is None or voice.channel is None:
            return False
        return voice.channel.id == self.voice_channel_id
