"""
bot/config.py
Startup configuration read from the environment (.env supported via python-dotenv).
Anything wrong here is fatal: main.py logs the ConfigError and exits.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigError(ValueError):
    """Raised when a required setting is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    token: str
    guild_id: int
    voice_channel_id: int
    user_id: int
    kick_channel_slug: str
    check_interval_ms: int = 30_000
    kick_timeout_ms: int = 10_000
    audio_directory: Path = Path("audios")
    ffmpeg_path: str = "ffmpeg"
    log_directory: Path = Path("logs")

    @property
    def check_interval(self) -> float:
        return self.check_interval_ms / 1000

    @property
    def kick_timeout(self) -> float:
        return self.kick_timeout_ms / 1000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from *env* (defaults to os.environ after load_dotenv)."""
        if env is None:
            load_dotenv()
            env = os.environ

        return cls(
            token=_required(env, "DISCORD_BOT_TOKEN"),
            guild_id=_snowflake(env, "TARGET_GUILD_ID"),
            voice_channel_id=_snowflake(env, "TARGET_VOICE_CHANNEL_ID"),
            user_id=_snowflake(env, "TARGET_USER_ID"),
            kick_channel_slug=_required(env, "KICK_CHANNEL_SLUG"),
            check_interval_ms=_positive_ms(env, "CHECK_INTERVAL_MS", 30_000),
            kick_timeout_ms=_positive_ms(env, "KICK_TIMEOUT_MS", 10_000),
            audio_directory=Path(env.get("AUDIO_DIRECTORY") or "audios"),
            ffmpeg_path=env.get("FFMPEG_PATH") or "ffmpeg",
            log_directory=Path(env.get("LOG_DIRECTORY") or "logs"),
        )


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} is not set.")
    return value


def _snowflake(env: Mapping[str, str], name: str) -> int:
    raw = _required(env, name)
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a numeric Discord ID, got {raw!r}.") from None
    if value <= 0:
        raise ConfigError(f"{name} must be a positive Discord ID.")
    return value


def _positive_ms(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer number of milliseconds, got {raw!r}.") from None
    if value <= 0:
        raise ConfigError(f"{name} must be a positive number of milliseconds.")
    return value
