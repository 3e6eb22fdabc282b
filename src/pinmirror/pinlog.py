"""Pin and unpin notices for a guild's log channel."""

from __future__ import annotations

import discord

from pinmirror.logging import get_logger
from pinmirror.models import GuildSettings

log = get_logger("pinlog")

PIN_COLOR = 0x23D160
UNPIN_COLOR = 0xFF470F

# Embed descriptions are capped by Discord
MAX_DESCRIPTION_LENGTH = 4096


def build_notice(
    message: discord.Message,
    channel: discord.abc.GuildChannel,
    pinned: bool,
) -> discord.Embed:
    """Build the log embed for a pin or unpin.

    Args:
        message: The pinned or unpinned message.
        channel: Channel the pin changed in.
        pinned: True for a pin, False for an unpin.
    """
    action = "pinned" if pinned else "unpinned"
    description = (
        f"**Message sent by {message.author.mention} {action} in {channel.mention}**\n"
        f"{message.content}"
    )

    embed = discord.Embed(
        description=description[:MAX_DESCRIPTION_LENGTH],
        color=PIN_COLOR if pinned else UNPIN_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    embed.set_author(name=str(message.author), icon_url=message.author.display_avatar.url)
    embed.set_footer(text=f"ID: {message.id}")
    if message.attachments:
        embed.set_image(url=message.attachments[0].url)
    return embed


class LogPublisher:
    """Sends pin notices to the configured log channel.

    Failures (missing channel, missing permissions, HTTP errors) are logged
    and swallowed; logging never blocks mirroring.
    """

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def publish(
        self,
        settings: GuildSettings,
        message: discord.Message,
        channel: discord.abc.GuildChannel,
        pinned: bool,
    ) -> bool:
        """Send a pin or unpin notice.

        Returns:
            True if the notice was sent.
        """
        if settings.log_channel_id is None:
            return False

        log_channel = self.client.get_channel(int(settings.log_channel_id))
        if log_channel is None:
            log.warning(
                "log_channel_missing",
                guild_id=settings.guild_id,
                log_channel_id=settings.log_channel_id,
            )
            return False

        try:
            await log_channel.send(embed=build_notice(message, channel, pinned))
        except discord.HTTPException as e:
            log.warning(
                "log_notice_failed",
                guild_id=settings.guild_id,
                log_channel_id=settings.log_channel_id,
                error=str(e),
            )
            return False

        log.debug(
            "log_notice_sent",
            guild_id=settings.guild_id,
            message_id=str(message.id),
            pinned=pinned,
        )
        return True
