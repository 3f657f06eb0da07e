"""Tests for the livestream and voice presence checks."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import discord
import pytest

from probes.livestream import LivestreamProbe, livestream_is_active
from probes.presence import PresenceProbe


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, delay: float = 0.0):
        self.status = status
        self.payload = payload
        self.delay = delay

    async def __aenter__(self) -> "FakeResponse":
        if self.delay:
            await asyncio.sleep(self.delay)
        return self

    async def __aexit__(self, *exc) -> bool:
        return False

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse = None, error: Exception = None):
        self.response = response
        self.error = error
        self.closed = False
        self.urls = []

    def get(self, url: str) -> FakeResponse:
        self.urls.append(url)
        if self.error:
            raise self.error
        return self.response

    async def close(self) -> None:
        self.closed = True


class TestLivestreamIsActive:
    """Tests for livestream_is_active payload interpretation."""

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"livestream": {"is_live": True}}, True),
            ({"livestream": {"is_live": False}}, False),
            ({"livestream": {"session_title": "hello"}}, True),
            ({"livestream": {"is_live": None}}, True),
            ({"livestream": None}, False),
            ({"slug": "somechannel"}, False),
            ([], False),
            (None, False),
        ],
    )
    def test_payloads(self, payload, expected) -> None:
        assert livestream_is_active(payload) is expected


class TestLivestreamProbe:
    """Tests for LivestreamProbe.is_live."""

    @pytest.mark.asyncio
    async def test_live_channel(self) -> None:
        session = FakeSession(FakeResponse(payload={"livestream": {"is_live": True}}))
        checker = LivestreamProbe("somechannel", timeout=1.0, session=session)
        assert await checker.is_live() is True
        assert session.urls == ["https://kick.com/api/v1/channels/somechannel"]

    @pytest.mark.asyncio
    async def test_slug_is_url_encoded(self) -> None:
        session = FakeSession(FakeResponse(payload={}))
        checker = LivestreamProbe("a b/c", timeout=1.0, session=session)
        await checker.is_live()
        assert session.urls == ["https://kick.com/api/v1/channels/a%20b%2Fc"]

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        session = FakeSession(FakeResponse(status=404, payload={"livestream": {"is_live": True}}))
        checker = LivestreamProbe("somechannel", timeout=1.0, session=session)
        assert await checker.is_live() is False

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        checker = LivestreamProbe("somechannel", timeout=1.0, session=session)
        assert await checker.is_live() is False

    @pytest.mark.asyncio
    async def test_bad_json(self) -> None:
        session = FakeSession(FakeResponse(payload=ValueError("not json")))
        checker = LivestreamProbe("somechannel", timeout=1.0, session=session)
        assert await checker.is_live() is False

    @pytest.mark.asyncio
    async def test_timeout_resolves_false_promptly(self) -> None:
        session = FakeSession(FakeResponse(payload={"livestream": {}}, delay=10.0))
        checker = LivestreamProbe("somechannel", timeout=0.05, session=session)
        loop = asyncio.get_running_loop()

        started = loop.time()
        assert await checker.is_live() is False
        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self) -> None:
        session = FakeSession(FakeResponse(payload={}))
        checker = LivestreamProbe("somechannel", session=session)
        await checker.close()
        assert session.closed is False


def make_member(channel_id=None):
    member = MagicMock(name="Member")
    if channel_id is None:
        member.voice = None
    else:
        member.voice.channel.id = channel_id
    return member


class TestPresenceProbe:
    """Tests for PresenceProbe.is_user_in_target_voice."""

    @pytest.mark.asyncio
    async def test_cached_member_in_target_channel(self, guild, settings) -> None:
        guild.get_member.return_value = make_member(settings.voice_channel_id)
        checker = PresenceProbe(settings.user_id, settings.voice_channel_id)
        assert await checker.is_user_in_target_voice(guild) is True
        guild.get_member.assert_called_once_with(settings.user_id)

    @pytest.mark.asyncio
    async def test_member_in_other_channel(self, guild, settings) -> None:
        guild.get_member.return_value = make_member(999)
        checker = PresenceProbe(settings.user_id, settings.voice_channel_id)
        assert await checker.is_user_in_target_voice(guild) is False

    @pytest.mark.asyncio
    async def test_member_not_in_voice(self, guild, settings) -> None:
        guild.get_member.return_value = make_member(None)
        checker = PresenceProbe(settings.user_id, settings.voice_channel_id)
        assert await checker.is_user_in_target_voice(guild) is False

    @pytest.mark.asyncio
    async def test_member_fetched_on_cache_miss(self, guild, settings) -> None:
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(return_value=make_member(settings.voice_channel_id))
        checker = PresenceProbe(settings.user_id, settings.voice_channel_id)
        assert await checker.is_user_in_target_voice(guild) is True
        guild.fetch_member.assert_awaited_once_with(settings.user_id)

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_closed(self, guild, settings) -> None:
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(
            side_effect=discord.NotFound(MagicMock(status=404, reason="Not Found"), "Unknown Member")
        )
        checker = PresenceProbe(settings.user_id, settings.voice_channel_id)
        assert await checker.is_user_in_target_voice(guild) is False

    @pytest.mark.asyncio
    async def test_http_error_fails_closed(self, guild, settings) -> None:
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(
            side_effect=discord.HTTPException(MagicMock(status=500, reason="Server Error"), "oops")
        )
        checker = PresenceProbe(settings.user_id, settings.voice_channel_id)
        assert await checker.is_user_in_target_voice(guild) is False
