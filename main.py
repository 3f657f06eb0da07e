"""
main.py
Entry point for the live relay Discord bot.
Joins the target voice channel and loops the audio playlist while the Kick
stream is live and the watched user sits in that channel.
"""

from __future__ import annotations
import asyncio
import logging
import logging.handlers
import signal
import sys
from pathlib import Path

import discord
from discord.ext import commands

from bot.config import ConfigError, Settings

log = logging.getLogger("relaybot.main")


# ──────────────────────────────────────────────
# Logging setup
# ──────────────────────────────────────────────

def setup_logging(log_directory: Path) -> None:
    log_directory.mkdir(parents=True, exist_ok=True)

    log_formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)
    root_logger.addHandler(console_handler)

    # Rotating file handler
    file_handler = logging.handlers.RotatingFileHandler(
        log_directory / "relay.log",
        maxBytes=5_000_000,   # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(log_formatter)
    root_logger.addHandler(file_handler)


# ──────────────────────────────────────────────
# Bot subclass
# ──────────────────────────────────────────────

class RelayBot(commands.Bot):
    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.members      = True
        intents.voice_states = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

        from bot.voice import AudioRelay
        from media.playlist import PlaylistStore
        from probes.livestream import LivestreamProbe
        from probes.presence import PresenceProbe

        self.settings = settings
        self.relay = AudioRelay(
            PlaylistStore(settings.audio_directory),
            voice_channel_id=settings.voice_channel_id,
            ffmpeg_path=settings.ffmpeg_path,
        )
        self.livestream_probe = LivestreamProbe(settings.kick_channel_slug, timeout=settings.kick_timeout)
        self.presence_probe = PresenceProbe(settings.user_id, settings.voice_channel_id)

    async def setup_hook(self) -> None:
        """Called once after login, before starting the bot's event loop."""
        # Stale sessions from a previous run would make the first join fail.
        for vc in self.voice_clients:
            try:
                log.info("Cleaning up stale voice connection: %s", vc.channel)
                await vc.disconnect(force=True)
            except Exception as e:
                log.warning("Failed to clean up voice: %s", e)

        await self._load_ext("bot.events")
        log.info("Setup complete. Watching kick.com/%s for guild %s.",
                 self.settings.kick_channel_slug, self.settings.guild_id)

    async def _load_ext(self, module: str) -> None:
        """Load a cog from its module, with error logging."""
        try:
            await self.load_extension(module)
            log.info("Loaded extension: %s", module)
        except Exception as e:
            log.exception("Failed to load extension %s: %s", module, e)

    async def on_error(self, event_method: str, *args, **kwargs) -> None:
        log.exception("Discord client error in %s", event_method)

    async def close(self) -> None:
        log.info("Shutting down bot...")
        self.relay.wanted = False
        await self.relay.disconnect()
        await self.livestream_probe.close()
        await super().close()


# ──────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────

async def run_bot(bot: RelayBot) -> None:
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log.info("Received %s. Cleaning up.", sig.name)
        loop.create_task(bot.close())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still reaches main()
            pass

    async with bot:
        await bot.start(bot.settings.token)


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        log.error("Invalid configuration: %s", e)
        sys.exit(1)

    setup_logging(settings.log_directory)
    settings.audio_directory.mkdir(parents=True, exist_ok=True)

    bot = RelayBot(settings)

    try:
        asyncio.run(run_bot(bot))
    except KeyboardInterrupt:
        log.info("Bot interrupted by user.")
    except discord.LoginFailure as e:
        log.error("Discord login failed: %s", e)
        sys.exit(1)
    except Exception as e:
        log.exception("Unexpected error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
