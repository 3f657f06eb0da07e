"""
bot/events.py
Discord event handlers and the periodic condition evaluation loop.
Each tick checks the Kick stream and the watched user's voice channel, then
tells the AudioRelay to join or leave.
"""

from __future__ import annotations
import asyncio
import logging
from typing import TYPE_CHECKING, Optional

import discord
from discord.ext import commands, tasks

from bot.state import ConditionSnapshot, ConnectionState, PlaybackState

if TYPE_CHECKING:
    from bot.config import Settings
    from bot.voice import AudioRelay
    from probes.livestream import LivestreamProbe
    from probes.presence import PresenceProbe

log = logging.getLogger("relaybot.events")


class PresenceWatch(commands.Cog):
    def __init__(self, bot: commands.Bot, settings: Settings, relay: AudioRelay,
                 livestream: LivestreamProbe, presence: PresenceProbe):
        self.bot        = bot
        self.settings   = settings
        self.relay      = relay
        self.livestream = livestream
        self.presence   = presence
        self.snapshot   = ConditionSnapshot()
        self._lock      = asyncio.Lock()

    async def cog_load(self) -> None:
        self.evaluate_loop.change_interval(seconds=self.settings.check_interval)
        self.evaluate_loop.start()

    async def cog_unload(self) -> None:
        self.evaluate_loop.cancel()

    # ────────────────────────────────────────
    # Gateway events
    # ────────────────────────────────────────

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        log.info("Logged in as %s (ID: %s)", self.bot.user, self.bot.user.id)

    @commands.Cog.listener()
    async def on_shard_disconnect(self, shard_id: int) -> None:
        log.warning("Shard %s disconnected.", shard_id)

    @commands.Cog.listener()
    async def on_voice_state_update(self, member: discord.Member,
                                    before: discord.VoiceState,
                                    after: discord.VoiceState) -> None:
        if self.bot.user is None or member.id != self.bot.user.id:
            return
        if member.guild.id != self.settings.guild_id:
            return
        self.relay.handle_voice_state(after.channel.id if after.channel else None)

    # ────────────────────────────────────────
    # Evaluation loop
    # ────────────────────────────────────────

    @tasks.loop(seconds=30)
    async def evaluate_loop(self) -> None:
        try:
            await self.evaluate()
        except Exception as e:
            log.exception("Condition evaluation error: %s", e)

    @evaluate_loop.before_loop
    async def before_evaluate(self) -> None:
        await self.bot.wait_until_ready()

    async def _resolve_guild(self) -> Optional[discord.Guild]:
        guild = self.bot.get_guild(self.settings.guild_id)
        if guild is not None:
            return guild
        try:
            return await self.bot.fetch_guild(self.settings.guild_id)
        except discord.DiscordException as e:
            log.error("Unable to fetch target guild %s: %s", self.settings.guild_id, e)
            return None

    async def evaluate(self) -> None:
        """Run one tick. A tick that arrives while another is running is dropped."""
        if self._lock.locked():
            log.debug("Evaluation already in progress; skipping tick.")
            return

        async with self._lock:
            try:
                await self._evaluate()
            except Exception as e:
                log.error("Failed to evaluate conditions: %s", e)

    async def _evaluate(self) -> None:
        guild = await self._resolve_guild()
        if guild is None:
            log.warning("Target guild %s unavailable.", self.settings.guild_id)
            self._apply(ConditionSnapshot())
            await self.relay.disconnect()
            return

        live, present = await asyncio.gather(
            self.livestream.is_live(),
            self.presence.is_user_in_target_voice(guild),
        )
        snapshot = self._apply(ConditionSnapshot(live=live, user_present=present))

        if snapshot.should_connect:
            await self.relay.sync()
            if self.relay.state in (ConnectionState.DISCONNECTED, ConnectionState.DESTROYED):
                await self.relay.connect(guild)
            elif (self.relay.state is ConnectionState.READY
                  and self.relay.playback is PlaybackState.IDLE
                  and len(self.relay.playlist)):
                self.relay.play_next()
        else:
            await self.relay.disconnect()

    def _apply(self, snapshot: ConditionSnapshot) -> ConditionSnapshot:
        if self.snapshot.should_connect and not snapshot.should_connect:
            log.info("Conditions not met (live=%s, present=%s). Leaving voice channel if connected.",
                     snapshot.live, snapshot.user_present)
        elif snapshot.should_connect and not self.snapshot.should_connect:
            log.info("Stream is live and target user is in voice. Joining.")
        self.snapshot = snapshot
        self.relay.wanted = snapshot.should_connect
        return snapshot


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(PresenceWatch(
        bot,
        settings=bot.settings,
        relay=bot.relay,
        livestream=bot.livestream_probe,
        presence=bot.presence_probe,
    ))
