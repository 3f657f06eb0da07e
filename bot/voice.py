"""
bot/voice.py
Owns the bot's voice connection and loops the playlist through it.

Connection lifecycle:
    DISCONNECTED -> CONNECTING -> READY -> (RECONNECTING -> READY)
    any state    -> DESTROYED  -> DISCONNECTED   via disconnect()

discord.py calls the player's ``after`` hook from its audio thread; the hook
only marshals onto the event loop, all state changes happen there.
"""

from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

import discord

from bot.state import ConnectionState, PlaybackState
from media.playlist import PlaylistStore

log = logging.getLogger("relaybot.voice")

SourceFactory = Callable[[Path], discord.AudioSource]


class AudioRelay:
    """Voice connection state machine plus looped playlist playback."""

    CONNECT_TIMEOUT  = 20.0
    RECOVER_TIMEOUT  = 5.0
    RETRY_DELAY      = 1.0
    RECONNECT_POLL   = 0.25

    def __init__(self, playlist: PlaylistStore, voice_channel_id: int,
                 ffmpeg_path: str = "ffmpeg",
                 source_factory: Optional[SourceFactory] = None):
        self.playlist = playlist
        self.voice_channel_id = voice_channel_id
        self.ffmpeg_path = ffmpeg_path
        self._source_factory = source_factory or self._ffmpeg_source

        self.vc: Optional[discord.VoiceClient] = None
        # Latest evaluator decision; callbacks re-check it before acting.
        self.wanted = False
        self._state = ConnectionState.DISCONNECTED
        self._playback = PlaybackState.IDLE
        self._state_waiters: list[tuple[frozenset, asyncio.Future]] = []
        self._retry_task: Optional[asyncio.Task] = None
        self._recover_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None

    # ──────────────────────────────────────────
    # State
    # ──────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def playback(self) -> PlaybackState:
        return self._playback

    @property
    def is_connected(self) -> bool:
        return self.vc is not None and self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.READY,
            ConnectionState.RECONNECTING,
        )

    def _set_state(self, new: ConnectionState) -> None:
        if new is self._state:
            return
        log.debug("Voice state %s -> %s", self._state.name, new.name)
        self._state = new
        for states, waiter in self._state_waiters:
            if new in states and not waiter.done():
                waiter.set_result(new)

    async def wait_for_state(self, *states: ConnectionState, timeout: float) -> ConnectionState:
        """Wait until the relay enters one of *states*.

        Raises asyncio.TimeoutError if none is reached within *timeout* seconds.
        """
        if self._state in states:
            return self._state
        entry = (frozenset(states), asyncio.get_running_loop().create_future())
        self._state_waiters.append(entry)
        try:
            return await asyncio.wait_for(entry[1], timeout=timeout)
        finally:
            self._state_waiters.remove(entry)

    # ──────────────────────────────────────────
    # Connection management
    # ──────────────────────────────────────────

    async def _resolve_channel(self, guild: discord.Guild):
        channel = guild.get_channel(self.voice_channel_id)
        if channel is not None:
            return channel
        try:
            return await guild.fetch_channel(self.voice_channel_id)
        except discord.DiscordException as e:
            log.error("Unable to fetch target voice channel %s: %s", self.voice_channel_id, e)
            return None

    async def connect(self, guild: discord.Guild) -> bool:
        """Join the target channel and start playback. Returns True once READY."""
        if self._state not in (ConnectionState.DISCONNECTED, ConnectionState.DESTROYED):
            log.debug("connect() ignored while %s.", self._state.name)
            return self._state is ConnectionState.READY

        channel = await self._resolve_channel(guild)
        if channel is None:
            log.error("Target voice channel %s not found.", self.voice_channel_id)
            return False
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            log.error("Channel %s is not a voice-capable channel.", self.voice_channel_id)
            return False

        self.playlist.refresh()
        if not len(self.playlist):
            log.warning("Skipping voice connection because the playlist is empty.")
            return False

        self._set_state(ConnectionState.CONNECTING)
        try:
            self.vc = await channel.connect(
                timeout=self.CONNECT_TIMEOUT,
                reconnect=True,
                self_deaf=False,
                self_mute=False,
            )
        except asyncio.TimeoutError:
            log.error("Voice connection to %s not ready after %.0fs.",
                      channel.name, self.CONNECT_TIMEOUT)
            await self._abort_connect(guild)
            return False
        except Exception as e:
            log.error("Failed to establish voice connection to %s: %s", channel.name, e)
            await self._abort_connect(guild)
            return False

        if self._state is not ConnectionState.CONNECTING:
            log.info("Voice connection torn down while joining; leaving again.")
            await self.disconnect()
            return False

        self._set_state(ConnectionState.READY)
        log.info("Connected to voice channel %s. Starting playback.", channel.name)
        if self._playback is PlaybackState.IDLE:
            self.play_next()
        return True

    async def sync(self) -> ConnectionState:
        """Drop a READY session whose voice client discord.py has already lost."""
        if self._state is ConnectionState.READY and (self.vc is None or not self.vc.is_connected()):
            log.warning("Voice client is no longer connected. Resetting for a fresh join.")
            await self.disconnect()
        return self._state

    async def _abort_connect(self, guild: discord.Guild) -> None:
        # discord.py may leave a half-open client registered on the guild
        self.vc = self.vc or guild.voice_client
        await self.disconnect()

    async def disconnect(self) -> None:
        """Tear everything down. Safe to call in any state, any number of times."""
        self._cancel_task(self._retry_task)
        self._retry_task = None
        if self._recover_task is not asyncio.current_task():
            self._cancel_task(self._recover_task)
        self._recover_task = None

        vc, self.vc = self.vc, None
        if vc is not None:
            self._set_state(ConnectionState.DESTROYED)
            try:
                vc.stop()
                await vc.disconnect(force=True)
                log.info("Disconnected from voice channel.")
            except Exception as e:
                log.error("Error destroying voice connection: %s", e)

        self._playback = PlaybackState.IDLE
        self.playlist.reset()
        self._set_state(ConnectionState.DISCONNECTED)

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done():
            task.cancel()

    # ──────────────────────────────────────────
    # Unsolicited disconnect recovery
    # ──────────────────────────────────────────

    def handle_voice_state(self, channel_id: Optional[int]) -> None:
        """Feed the bot's own voice-state updates for the target guild."""
        if channel_id is None:
            if self._state is ConnectionState.READY and self.vc is not None:
                log.warning("Voice connection dropped. Waiting for it to recover.")
                self._set_state(ConnectionState.RECONNECTING)
                self._recover_task = asyncio.get_running_loop().create_task(self._recover())
        elif self._state is ConnectionState.RECONNECTING and channel_id == self.voice_channel_id:
            log.info("Voice connection re-signalled.")
            self._set_state(ConnectionState.READY)

    async def _poll_reconnected(self) -> None:
        while self._state is ConnectionState.RECONNECTING:
            if self.vc is not None and self.vc.is_connected():
                log.info("Voice connection re-established.")
                self._set_state(ConnectionState.READY)
                return
            await asyncio.sleep(self.RECONNECT_POLL)

    async def _recover(self) -> None:
        """Race re-signalling against reconnection, bounded by RECOVER_TIMEOUT."""
        poller = asyncio.ensure_future(self._poll_reconnected())
        try:
            await self.wait_for_state(
                ConnectionState.READY,
                ConnectionState.DESTROYED,
                ConnectionState.DISCONNECTED,
                timeout=self.RECOVER_TIMEOUT,
            )
        except asyncio.TimeoutError:
            log.warning("Voice connection disconnected and could not automatically recover.")
            await self.disconnect()
        else:
            if self._state is ConnectionState.READY and self._playback is PlaybackState.IDLE:
                self.play_next()
        finally:
            poller.cancel()
            if self._recover_task is asyncio.current_task():
                self._recover_task = None

    # ──────────────────────────────────────────
    # Audio playback
    # ──────────────────────────────────────────

    def _ffmpeg_source(self, track: Path) -> discord.AudioSource:
        return discord.FFmpegPCMAudio(
            str(track),
            executable=self.ffmpeg_path,
            options="-vn",
        )

    def _can_play(self) -> bool:
        return (self.wanted
                and self.vc is not None
                and self.vc.is_connected()
                and self._state is ConnectionState.READY
                and len(self.playlist) > 0)

    def play_next(self) -> None:
        """Start the next track; skip unplayable ones, back off after a full failed pass."""
        while self._can_play():
            track = self.playlist.next()
            source = None
            try:
                source = self._source_factory(track)
                self.vc.play(source, after=self._make_after_hook())
            except Exception as e:
                log.error("Failed to play track %s: %s", track.name, e)
                if source is not None:
                    source.cleanup()
                if self.playlist.cursor == 0:
                    self._schedule_retry()
                    return
                continue

            self._playback = PlaybackState.PLAYING
            log.info("Now playing: %s", track.name)
            return

    def _make_after_hook(self) -> Callable[[Optional[Exception]], None]:
        loop = asyncio.get_running_loop()

        def after_play(error: Optional[Exception]) -> None:
            loop.call_soon_threadsafe(self._on_playback_finished, error)

        return after_play

    def _on_playback_finished(self, error: Optional[Exception]) -> None:
        if error:
            log.error("Audio player error: %s", error)
        self._playback = PlaybackState.IDLE

        if not self.is_connected:
            return
        if not self.wanted:
            self._schedule_teardown()
            return
        if not len(self.playlist):
            log.warning("Audio playlist is empty. Disconnecting from voice channel.")
            self._schedule_teardown()
            return
        self.play_next()

    def _schedule_teardown(self) -> None:
        if self._teardown_task is not None and not self._teardown_task.done():
            return
        self._teardown_task = asyncio.get_running_loop().create_task(self.disconnect())
        self._teardown_task.add_done_callback(self._teardown_done)

    def _teardown_done(self, task: asyncio.Task) -> None:
        if self._teardown_task is task:
            self._teardown_task = None
        if not task.cancelled() and task.exception() is not None:
            log.error("Voice teardown failed: %s", task.exception())

    def _schedule_retry(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            return
        log.warning("Every track failed to start. Retrying in %.1fs.", self.RETRY_DELAY)
        self._retry_task = asyncio.get_running_loop().create_task(self._retry_later())

    async def _retry_later(self) -> None:
        await asyncio.sleep(self.RETRY_DELAY)
        self._retry_task = None
        if self._playback is PlaybackState.IDLE:
            self.play_next()
