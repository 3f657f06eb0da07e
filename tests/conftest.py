"""Test fixtures for the live relay bot."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from bot.config import Settings
from bot.voice import AudioRelay
from media.playlist import PlaylistStore

VOICE_CHANNEL_ID = 2000
GUILD_ID = 1000
USER_ID = 3000


@pytest.fixture
def settings() -> Settings:
    return Settings(
        token="token",
        guild_id=GUILD_ID,
        voice_channel_id=VOICE_CHANNEL_ID,
        user_id=USER_ID,
        kick_channel_slug="somechannel",
    )


@pytest.fixture
def audio_dir(tmp_path: Path) -> Path:
    """Directory with three MP3s plus files that must be ignored."""
    for name in ("b_track.mp3", "A_track.MP3", "c_track.mp3", "notes.txt"):
        (tmp_path / name).write_bytes(b"")
    (tmp_path / "folder.mp3").mkdir()
    return tmp_path


@pytest.fixture
def voice_client() -> MagicMock:
    vc = MagicMock(name="VoiceClient")
    vc.disconnect = AsyncMock()
    vc.is_connected.return_value = True
    return vc


@pytest.fixture
def voice_channel(voice_client: MagicMock) -> MagicMock:
    channel = MagicMock(spec=discord.VoiceChannel)
    channel.id = VOICE_CHANNEL_ID
    channel.name = "radio"
    channel.connect = AsyncMock(return_value=voice_client)
    return channel


@pytest.fixture
def guild(voice_channel: MagicMock) -> MagicMock:
    g = MagicMock(name="Guild")
    g.id = GUILD_ID
    g.get_channel.return_value = voice_channel
    g.voice_client = None
    return g


@pytest.fixture
def source_factory() -> MagicMock:
    return MagicMock(side_effect=lambda track: MagicMock(name=f"source:{track.name}"))


@pytest.fixture
def relay(audio_dir: Path, source_factory: MagicMock) -> AudioRelay:
    r = AudioRelay(
        PlaylistStore(audio_dir),
        voice_channel_id=VOICE_CHANNEL_ID,
        source_factory=source_factory,
    )
    r.wanted = True
    return r
