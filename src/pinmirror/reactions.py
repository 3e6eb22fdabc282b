"""Reaction auto-pin trigger.

Members can mirror a message without pinning it by reacting with the pin
emoji. The trigger fires when the number of distinct non-bot reactors is
exactly the guild's threshold. Exact equality keeps it from firing on every
further reaction; the mirrored list is what actually prevents a second
mirror when the count dips below and climbs back to the threshold.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord

from pinmirror.channels import is_eligible_channel
from pinmirror.logging import get_logger
from pinmirror.models import GuildSettings

if TYPE_CHECKING:
    from pinmirror.config import Config

log = get_logger("reactions")


class ReactionTrigger:
    """Decides whether a reaction event should mirror its message."""

    def __init__(self, config: Config) -> None:
        self.pin_emoji = config.mirror.pin_emoji

    def is_pin_emoji(self, emoji: discord.PartialEmoji | discord.Emoji | str) -> bool:
        """Check whether an emoji is the configured pin marker."""
        return str(emoji) == self.pin_emoji

    def is_candidate(
        self,
        settings: GuildSettings,
        message: discord.Message,
        reactor: discord.abc.Snowflake,
        emoji: discord.PartialEmoji | discord.Emoji | str,
    ) -> bool:
        """Apply the cheap filters that need no network call.

        Rejects the author's own reactions, other emoji, ineligible channels
        and guilds where reaction mirroring is off.
        """
        if not self.is_pin_emoji(emoji):
            return False
        if reactor.id == message.author.id:
            return False
        if not settings.reactions_enabled:
            return False
        return is_eligible_channel(message.channel, settings)

    async def count_reactors(self, message: discord.Message) -> int:
        """Count distinct non-bot users who reacted with the pin emoji."""
        reaction = discord.utils.find(
            lambda r: self.is_pin_emoji(r.emoji), message.reactions
        )
        if reaction is None:
            return 0

        reactor_ids = set()
        async for user in reaction.users():
            if not user.bot:
                reactor_ids.add(user.id)
        return len(reactor_ids)

    async def should_fire(
        self,
        settings: GuildSettings,
        message: discord.Message,
        reactor: discord.abc.Snowflake,
        emoji: discord.PartialEmoji | discord.Emoji | str,
    ) -> bool:
        """Check whether this reaction brings the message to the threshold.

        Does not consult the mirrored list; callers do that under the
        channel lock.
        """
        if not self.is_candidate(settings, message, reactor, emoji):
            return False

        try:
            count = await self.count_reactors(message)
        except discord.HTTPException as e:
            log.warning("reactors_fetch_failed", message_id=str(message.id), error=str(e))
            return False

        log.debug(
            "pin_reactions_counted",
            message_id=str(message.id),
            count=count,
            threshold=settings.reaction_threshold,
        )
        return count == settings.reaction_threshold
