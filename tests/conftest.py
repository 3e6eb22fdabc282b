"""Pytest configuration and shared fixtures.

Discord objects are stood in for by ``MagicMock``/``AsyncMock``. Channels use
``spec=discord.TextChannel`` so ``isinstance`` checks in the engine hold.
"""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from click.testing import CliRunner

from pinmirror.config import Config
from pinmirror.database import create_tables, get_engine
from pinmirror.settings import SettingsStore

GUILD_ID = 111111111
ARCHIVE_CHANNEL_ID = 900000001
LOG_CHANNEL_ID = 900000002
PIN_EMOJI = "\N{PUSHPIN}"


def http_error(cls=discord.HTTPException, status: int = 500):
    """Build a discord HTTP exception without a real response."""
    return cls(MagicMock(status=status, reason="error"), "error")


async def async_iter(items):
    """Yield items asynchronously, like ``Reaction.users()``."""
    for item in items:
        yield item


def paged_pins(messages: list) -> Callable[..., object]:
    """Stand-in for ``TextChannel.pins`` on discord.py 2.6+.

    Returns an async iterator capped at ``limit`` like the real method.
    ``messages`` is read at call time, so tests can pin more between calls.
    """

    def pins(*, limit: int | None = 50, before=None, oldest_first: bool = False):
        return async_iter(messages if limit is None else messages[:limit])

    return pins


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_data_dir(tmp_path):
    """Provide a temporary data directory for tests."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Create a test configuration with temp database."""
    return Config(data_dir=tmp_path, log_level="DEBUG")


@pytest.fixture
def engine(test_config: Config):
    """Create a test database engine with all tables."""
    eng = get_engine(test_config)
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> SettingsStore:
    """Settings store over the test database."""
    return SettingsStore(engine)


@pytest.fixture
def guild() -> MagicMock:
    """A guild the bot can see everything in."""
    mock_guild = MagicMock()
    mock_guild.id = GUILD_ID
    mock_guild.name = "Test Server"
    mock_guild.text_channels = []
    mock_guild.channels = []
    return mock_guild


@pytest.fixture
def make_channel(guild) -> Callable[..., MagicMock]:
    """Factory for text channels with pins and webhooks."""

    def _make(
        channel_id: int,
        pins: list | None = None,
        webhooks: list | None = None,
        view: bool = True,
        send: bool = True,
    ) -> MagicMock:
        channel = MagicMock(spec=discord.TextChannel)
        channel.id = channel_id
        channel.guild = guild
        channel.mention = f"<#{channel_id}>"
        channel.pins = AsyncMock(return_value=list(pins or []))
        channel.webhooks = AsyncMock(return_value=list(webhooks or []))
        channel.create_webhook = AsyncMock()
        channel.send = AsyncMock()
        channel.fetch_message = AsyncMock()
        channel.permissions_for = MagicMock(
            return_value=MagicMock(view_channel=view, send_messages=send)
        )
        guild.text_channels.append(channel)
        guild.channels.append(channel)
        return channel

    return _make


@pytest.fixture
def make_user() -> Callable[..., MagicMock]:
    """Factory for users/members."""

    def _make(user_id: int, name: str = "Alice", bot: bool = False) -> MagicMock:
        user = MagicMock()
        user.id = user_id
        user.bot = bot
        user.display_name = name
        user.mention = f"<@{user_id}>"
        user.display_avatar.url = f"https://cdn.example/avatars/{user_id}.png"
        user.__str__ = MagicMock(return_value=name)
        return user

    return _make


@pytest.fixture
def make_message(guild, make_user) -> Callable[..., MagicMock]:
    """Factory for messages in a given channel."""

    def _make(
        message_id: int,
        channel: MagicMock,
        content: str = "hello",
        author: MagicMock | None = None,
        attachments: list | None = None,
        embeds: list | None = None,
        reactions: list | None = None,
    ) -> MagicMock:
        message = MagicMock()
        message.id = message_id
        message.channel = channel
        message.guild = guild
        message.author = author or make_user(555555555)
        message.content = content
        message.clean_content = content
        message.attachments = list(attachments or [])
        message.embeds = list(embeds or [])
        message.reactions = list(reactions or [])
        return message

    return _make


@pytest.fixture
def make_webhook() -> Callable[..., MagicMock]:
    """Factory for webhooks that can send."""

    def _make(webhook_id: int = 700000001, token: str | None = "token") -> MagicMock:
        webhook = MagicMock()
        webhook.id = webhook_id
        webhook.token = token
        webhook.send = AsyncMock()
        return webhook

    return _make


@pytest.fixture
def make_reaction() -> Callable[..., MagicMock]:
    """Factory for a message reaction with its reacting users."""

    def _make(users: list, emoji: str = PIN_EMOJI) -> MagicMock:
        reaction = MagicMock()
        reaction.emoji = emoji
        reaction.count = len(users)
        reaction.users = MagicMock(side_effect=lambda: async_iter(list(users)))
        return reaction

    return _make


@pytest.fixture
def client(make_user) -> MagicMock:
    """Discord client stand-in; register channels in ``client.channels``."""
    mock_client = MagicMock()
    mock_client.channels = {}
    mock_client.guilds_by_id = {}
    mock_client.get_channel = MagicMock(side_effect=lambda cid: mock_client.channels.get(cid))
    mock_client.get_guild = MagicMock(side_effect=lambda gid: mock_client.guilds_by_id.get(gid))
    mock_client.user = make_user(424242, name="PinMirror", bot=True)
    mock_client.user.display_avatar.read = AsyncMock(return_value=b"avatar-bytes")
    return mock_client
