"""Impersonation publisher: republish a message as its original author.

Each archive channel gets one webhook (the "proxy"). The webhook's own name
and avatar do not matter since both are overridden on every send with the
source author's display name and avatar.

The publisher marks a message as mirrored only after the webhook confirmed
the send. Any permission or HTTP failure aborts quietly and leaves the
guild's mirrored list untouched, so a later pin or reaction can try again.
Callers must check ``GuildSettings.is_mirrored`` before publishing.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import discord
from discord.utils import MISSING
from sqlalchemy.exc import SQLAlchemyError

from pinmirror.logging import get_logger
from pinmirror.models import GuildSettings, ProxyPayload

if TYPE_CHECKING:
    from pinmirror.config import Config
    from pinmirror.settings import SettingsStore

log = get_logger("publisher")

ZERO_WIDTH_SPACE = "\u200b"

# Discord rejects webhook usernames longer than this
MAX_USERNAME_LENGTH = 80

PROXY_REASON = "A webhook is required for impersonation"


def clean_text(text: str, code: bool = False) -> str:
    """Defang mentions by following every ``@`` with a zero-width space.

    Args:
        text: Text to clean, usually ``Message.clean_content``.
        code: Also defang backticks, for text sent inside a code block.
    """
    if code:
        text = text.replace("`", "`" + ZERO_WIDTH_SPACE)
    return text.replace("@", "@" + ZERO_WIDTH_SPACE)


class ImpersonationPublisher:
    """Resolves per-channel proxies and republishes messages through them.

    Attributes:
        store: Settings store used to record mirrored ids.
        config: Application configuration.
        client: The logged-in Discord client; its avatar seeds new proxies.
    """

    def __init__(
        self,
        store: SettingsStore,
        config: Config,
        client: discord.Client,
    ) -> None:
        self.store = store
        self.config = config
        self.client = client
        self._proxy_locks: dict[int, asyncio.Lock] = {}

    def _proxy_lock(self, channel_id: int) -> asyncio.Lock:
        lock = self._proxy_locks.get(channel_id)
        if lock is None:
            lock = self._proxy_locks[channel_id] = asyncio.Lock()
        return lock

    async def _proxy_avatar(self) -> bytes | None:
        user = self.client.user
        if user is None:
            return None
        try:
            return await user.display_avatar.read()
        except discord.DiscordException as e:
            log.debug("proxy_avatar_unavailable", error=str(e))
            return None

    async def resolve_proxy(
        self, channel: discord.TextChannel
    ) -> discord.Webhook | None:
        """Get the channel's proxy webhook, creating one if there is none.

        When several usable webhooks exist the first one listed is used.
        Resolution is serialized per archive channel, so pins arriving from
        different source channels at once still share a single proxy.

        Args:
            channel: Archive channel to publish into.

        Returns:
            A webhook that can send, or None if listing or creating failed.
        """
        async with self._proxy_lock(channel.id):
            return await self._resolve_proxy(channel)

    async def _resolve_proxy(self, channel: discord.TextChannel) -> discord.Webhook | None:
        channel_id = str(channel.id)

        try:
            webhooks = await channel.webhooks()
        except discord.Forbidden:
            log.warning("proxy_list_forbidden", channel_id=channel_id)
            return None
        except discord.HTTPException as e:
            log.warning("proxy_list_failed", channel_id=channel_id, error=str(e))
            return None

        # Only incoming webhooks come back with a token we can send with
        usable = [webhook for webhook in webhooks if webhook.token]
        if usable:
            return usable[0]

        avatar = await self._proxy_avatar()
        try:
            webhook = await channel.create_webhook(
                name=self.config.mirror.proxy_name,
                avatar=avatar,
                reason=PROXY_REASON,
            )
        except discord.Forbidden:
            log.warning("proxy_create_forbidden", channel_id=channel_id)
            return None
        except discord.HTTPException as e:
            log.warning("proxy_create_failed", channel_id=channel_id, error=str(e))
            return None

        log.info("proxy_created", channel_id=channel_id, webhook_id=str(webhook.id))
        return webhook

    def build_payload(self, message: discord.Message) -> ProxyPayload:
        """Build the impersonated send for a message.

        Only the first attachment is forwarded. Embeds are forwarded as-is.
        """
        author = message.author
        return ProxyPayload(
            content=clean_text(message.clean_content),
            username=author.display_name[:MAX_USERNAME_LENGTH],
            avatar_url=author.display_avatar.url,
            attachment_urls=[message.attachments[0].url] if message.attachments else [],
            embeds=list(message.embeds),
        )

    async def publish(
        self,
        settings: GuildSettings,
        archive_channel: discord.TextChannel,
        message: discord.Message,
    ) -> bool:
        """Mirror a message into the archive channel.

        Args:
            settings: Settings of the message's guild. ``pins`` is appended to
                on success.
            archive_channel: Channel to publish into.
            message: Source message.

        Returns:
            True if the message was sent and recorded as mirrored.
        """
        message_id = str(message.id)

        proxy = await self.resolve_proxy(archive_channel)
        if proxy is None:
            return False

        payload = self.build_payload(message)
        if payload.is_empty:
            log.info("mirror_skipped_empty", message_id=message_id)
            return False

        try:
            files = MISSING
            if payload.attachment_urls:
                files = [await message.attachments[0].to_file()]

            await proxy.send(
                content=payload.content or MISSING,
                username=payload.username,
                avatar_url=payload.avatar_url,
                files=files,
                embeds=payload.embeds or MISSING,
                allowed_mentions=discord.AllowedMentions.none(),
                wait=True,
            )
        except discord.HTTPException as e:
            log.warning(
                "mirror_send_failed",
                message_id=message_id,
                archive_channel_id=str(archive_channel.id),
                error=str(e),
            )
            return False

        # Only a confirmed send may mark the message as mirrored
        try:
            await self.store.add_mirrored(settings.guild_id, message_id, message.channel.id)
        except SQLAlchemyError as e:
            # The copy is already posted; a later pin or reaction may post it again
            log.error(
                "mirror_record_failed",
                guild_id=settings.guild_id,
                message_id=message_id,
                archive_channel_id=str(archive_channel.id),
                error=str(e),
            )
            raise
        if not settings.is_mirrored(message_id):
            settings.pins.append(message_id)

        log.info(
            "pin_mirrored",
            guild_id=settings.guild_id,
            message_id=message_id,
            source_channel_id=str(message.channel.id),
            archive_channel_id=str(archive_channel.id),
        )
        return True
