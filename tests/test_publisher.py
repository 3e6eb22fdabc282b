"""Tests for the impersonation publisher."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest
from discord.utils import MISSING
from sqlalchemy.exc import SQLAlchemyError

from pinmirror.models import GuildSettings
from pinmirror.publisher import (
    MAX_USERNAME_LENGTH,
    PROXY_REASON,
    ZERO_WIDTH_SPACE,
    ImpersonationPublisher,
    clean_text,
)
from tests.conftest import ARCHIVE_CHANNEL_ID, GUILD_ID, http_error


@pytest.fixture
def publisher(store, test_config, client) -> ImpersonationPublisher:
    return ImpersonationPublisher(store, test_config, client)


@pytest.fixture
def settings() -> GuildSettings:
    return GuildSettings(guild_id=GUILD_ID, archive_channel_id=ARCHIVE_CHANNEL_ID)


class TestCleanText:
    """Mention defanging."""

    def test_breaks_every_at_sign(self) -> None:
        cleaned = clean_text("@everyone and @here")

        assert cleaned == f"@{ZERO_WIDTH_SPACE}everyone and @{ZERO_WIDTH_SPACE}here"

    def test_backticks_only_in_code_mode(self) -> None:
        assert clean_text("```") == "```"
        assert clean_text("`x`", code=True) == f"`{ZERO_WIDTH_SPACE}x`{ZERO_WIDTH_SPACE}"


class TestResolveProxy:
    """Finding or creating the archive channel's webhook."""

    @pytest.mark.asyncio
    async def test_reuses_first_usable_webhook(
        self, publisher, make_channel, make_webhook
    ) -> None:
        followed = make_webhook(1, token=None)
        first = make_webhook(2)
        second = make_webhook(3)
        channel = make_channel(ARCHIVE_CHANNEL_ID, webhooks=[followed, first, second])

        assert await publisher.resolve_proxy(channel) is first
        assert await publisher.resolve_proxy(channel) is first
        channel.create_webhook.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_webhook_when_none_exist(
        self, publisher, make_channel, make_webhook, test_config
    ) -> None:
        channel = make_channel(ARCHIVE_CHANNEL_ID)
        created = make_webhook(9)
        channel.create_webhook.return_value = created

        proxy = await publisher.resolve_proxy(channel)

        assert proxy is created
        channel.create_webhook.assert_awaited_once_with(
            name=test_config.mirror.proxy_name,
            avatar=b"avatar-bytes",
            reason=PROXY_REASON,
        )

    @pytest.mark.asyncio
    async def test_concurrent_resolution_creates_one_webhook(
        self, publisher, make_channel, make_webhook
    ) -> None:
        channel = make_channel(ARCHIVE_CHANNEL_ID)
        existing: list = []

        async def list_webhooks():
            await asyncio.sleep(0)
            return list(existing)

        async def create_webhook(**kwargs):
            await asyncio.sleep(0)
            webhook = make_webhook(len(existing) + 1)
            existing.append(webhook)
            return webhook

        channel.webhooks.side_effect = list_webhooks
        channel.create_webhook.side_effect = create_webhook

        first, second = await asyncio.gather(
            publisher.resolve_proxy(channel), publisher.resolve_proxy(channel)
        )

        assert channel.create_webhook.await_count == 1
        assert first is second

    @pytest.mark.asyncio
    async def test_listing_forbidden_returns_none(self, publisher, make_channel) -> None:
        channel = make_channel(ARCHIVE_CHANNEL_ID)
        channel.webhooks.side_effect = http_error(discord.Forbidden, 403)

        assert await publisher.resolve_proxy(channel) is None
        channel.create_webhook.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_failure_returns_none(self, publisher, make_channel) -> None:
        channel = make_channel(ARCHIVE_CHANNEL_ID)
        channel.create_webhook.side_effect = http_error(discord.Forbidden, 403)

        assert await publisher.resolve_proxy(channel) is None


class TestBuildPayload:
    """Shaping the impersonated message."""

    def test_payload_uses_author_identity(
        self, publisher, make_channel, make_message, make_user
    ) -> None:
        author = make_user(7, name="Bob")
        message = make_message(1, make_channel(5), content="hi @everyone", author=author)

        payload = publisher.build_payload(message)

        assert payload.username == "Bob"
        assert payload.avatar_url == "https://cdn.example/avatars/7.png"
        assert payload.content == f"hi @{ZERO_WIDTH_SPACE}everyone"
        assert payload.attachment_urls == []

    def test_long_display_name_is_truncated(
        self, publisher, make_channel, make_message, make_user
    ) -> None:
        message = make_message(1, make_channel(5), author=make_user(7, name="x" * 100))

        assert len(publisher.build_payload(message).username) == MAX_USERNAME_LENGTH

    def test_only_first_attachment_is_forwarded(
        self, publisher, make_channel, make_message
    ) -> None:
        first = MagicMock(url="https://cdn.example/a.png")
        second = MagicMock(url="https://cdn.example/b.png")
        message = make_message(1, make_channel(5), attachments=[first, second])

        assert publisher.build_payload(message).attachment_urls == [first.url]


class TestPublish:
    """Sending through the proxy and recording the result."""

    @pytest.mark.asyncio
    async def test_success_sends_and_records(
        self, publisher, settings, store, make_channel, make_message, make_webhook
    ) -> None:
        proxy = make_webhook()
        archive = make_channel(ARCHIVE_CHANNEL_ID, webhooks=[proxy])
        message = make_message(42, make_channel(5), content="pinned text")

        assert await publisher.publish(settings, archive, message) is True

        kwargs = proxy.send.await_args.kwargs
        assert kwargs["content"] == "pinned text"
        assert kwargs["username"] == message.author.display_name
        assert kwargs["avatar_url"] == message.author.display_avatar.url
        assert kwargs["files"] is MISSING
        assert kwargs["wait"] is True
        assert settings.pins == ["42"]
        assert await store.is_mirrored(GUILD_ID, 42) is True

    @pytest.mark.asyncio
    async def test_attachment_is_uploaded(
        self, publisher, settings, make_channel, make_message, make_webhook
    ) -> None:
        proxy = make_webhook()
        archive = make_channel(ARCHIVE_CHANNEL_ID, webhooks=[proxy])
        attachment = MagicMock(url="https://cdn.example/a.png")
        attachment.to_file = AsyncMock(return_value="file-object")
        message = make_message(42, make_channel(5), content="", attachments=[attachment])

        assert await publisher.publish(settings, archive, message) is True

        kwargs = proxy.send.await_args.kwargs
        assert kwargs["files"] == ["file-object"]
        assert kwargs["content"] is MISSING

    @pytest.mark.asyncio
    async def test_send_failure_leaves_pins_unchanged(
        self, publisher, settings, store, make_channel, make_message, make_webhook
    ) -> None:
        proxy = make_webhook()
        proxy.send.side_effect = http_error()
        archive = make_channel(ARCHIVE_CHANNEL_ID, webhooks=[proxy])
        message = make_message(42, make_channel(5))

        assert await publisher.publish(settings, archive, message) is False

        assert settings.pins == []
        assert await store.is_mirrored(GUILD_ID, 42) is False

    @pytest.mark.asyncio
    async def test_missing_proxy_aborts(
        self, publisher, settings, store, make_channel, make_message
    ) -> None:
        archive = make_channel(ARCHIVE_CHANNEL_ID)
        archive.create_webhook.side_effect = http_error(discord.Forbidden, 403)
        message = make_message(42, make_channel(5))

        assert await publisher.publish(settings, archive, message) is False
        assert settings.pins == []

    @pytest.mark.asyncio
    async def test_empty_message_is_skipped(
        self, publisher, settings, make_channel, make_message, make_webhook
    ) -> None:
        proxy = make_webhook()
        archive = make_channel(ARCHIVE_CHANNEL_ID, webhooks=[proxy])
        message = make_message(42, make_channel(5), content="")

        assert await publisher.publish(settings, archive, message) is False
        proxy.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_failure_after_send_is_logged(
        self, publisher, settings, make_channel, make_message, make_webhook
    ) -> None:
        proxy = make_webhook()
        archive = make_channel(ARCHIVE_CHANNEL_ID, webhooks=[proxy])
        message = make_message(42, make_channel(5))
        publisher.store = MagicMock()
        publisher.store.add_mirrored = AsyncMock(side_effect=SQLAlchemyError("database is locked"))

        with patch("pinmirror.publisher.log") as mock_log:
            with pytest.raises(SQLAlchemyError):
                await publisher.publish(settings, archive, message)

        proxy.send.assert_awaited_once()
        mock_log.error.assert_called_once()
        assert mock_log.error.call_args.args[0] == "mirror_record_failed"
        assert mock_log.error.call_args.kwargs["message_id"] == "42"
        assert settings.pins == []
