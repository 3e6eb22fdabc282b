"""Prefix commands for configuring pin mirroring in a guild.

Mutating commands require the Manage Server permission; configured operators
bypass that check. Malformed input gets a usage reply and changes nothing.

The ``diag`` commands are a fixed set of read-only diagnostics for operators.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from pinmirror.channels import can_send, is_text_channel
from pinmirror.logging import get_logger
from pinmirror.publisher import clean_text

if TYPE_CHECKING:
    from pinmirror.bot import PinBot
    from pinmirror.models import GuildSettings

log = get_logger("commands")

NO_PERMISSION = "You need to have Manage Server permissions to use this command!"


def code_block(text: str) -> str:
    """Wrap text in a code block, defanging backticks and mentions."""
    return f"```\n{clean_text(text, code=True)}\n```"


class SettingsCommands(commands.Cog):
    """Guild configuration commands.

    ``set pins``/``set logs`` choose the archive and log channels,
    ``set reacts`` the reaction threshold; ``unset`` clears each of them.
    """

    def __init__(self, bot: PinBot) -> None:
        self.bot = bot
        self.config = bot.config

    @property
    def prefix(self) -> str:
        return self.config.discord.command_prefix

    def help_text(self) -> str:
        p = self.prefix
        return "\n".join(
            [
                f"{p}set logs <channel>",
                f"{p}set pins <channel>",
                f"{p}set reacts <number of reactions required to auto-pin a message>",
                f"{p}unset logs",
                f"{p}unset pins",
                f"{p}unset reacts",
                f"{p}help",
            ]
        )

    async def cog_check(self, ctx: commands.Context) -> bool:
        """Only answer humans in guild channels the bot can post in."""
        if ctx.guild is None or ctx.author.bot:
            return False
        return can_send(ctx.channel)

    async def cog_command_error(
        self, ctx: commands.Context, error: commands.CommandError
    ) -> None:
        """Log command failures; checks and unknown input stay quiet."""
        if isinstance(error, (commands.CheckFailure, commands.UserInputError)):
            return
        log.error(
            "command_failed",
            command=ctx.command.qualified_name if ctx.command else "unknown",
            error=str(error),
        )
        await self.bot.report_fault(f"Command {ctx.message.content!r} failed: {error!r}")

    def can_manage(self, ctx: commands.Context) -> bool:
        """Check Manage Server permission, with an operator bypass."""
        if self.config.is_operator(ctx.author.id):
            return True
        permissions = getattr(ctx.author, "guild_permissions", None)
        return bool(permissions and permissions.manage_guild)

    async def manage_check(self, ctx: commands.Context) -> bool:
        """Reply with a rejection if the caller cannot manage the guild."""
        if self.can_manage(ctx):
            return True
        await ctx.send(NO_PERMISSION)
        log.info(
            "command_rejected",
            command=ctx.command.qualified_name if ctx.command else "unknown",
            user=str(ctx.author),
            reason="missing_manage_guild",
        )
        return False

    async def _settings(self, ctx: commands.Context) -> GuildSettings | None:
        if self.bot.store is None:
            await ctx.send("Settings are unavailable right now.")
            return None
        return await self.bot.store.get(ctx.guild.id)

    async def _mentioned_text_channel(
        self, ctx: commands.Context, usage: str
    ) -> discord.TextChannel | None:
        """Validate that exactly one text channel of this guild was mentioned."""
        mentions = ctx.message.channel_mentions
        if len(mentions) != 1:
            await ctx.send(code_block(f"Usage: {self.prefix}{usage}"))
            return None

        channel = mentions[0]
        if channel.guild.id != ctx.guild.id:
            await ctx.send("That channel isn't in this server!")
            return None
        if not is_text_channel(channel):
            await ctx.send("Not a text channel!")
            return None
        return channel  # type: ignore[return-value]

    async def _save_and_seed(
        self,
        ctx: commands.Context,
        settings: GuildSettings,
        was_configured: bool,
    ) -> None:
        await self.bot.store.save(settings)  # type: ignore[union-attr]
        # A guild that just became configured has never been seeded
        if not was_configured and settings.is_configured and self.bot.pin_engine is not None:
            await self.bot.pin_engine.seed_guild(ctx.guild)

    # =========================================================================
    # help
    # =========================================================================

    @commands.command(name="help")
    async def help_command(self, ctx: commands.Context) -> None:
        """List the available commands."""
        await ctx.send(f"Commands list: {code_block(self.help_text())}")

    # =========================================================================
    # set
    # =========================================================================

    @commands.group(name="set", invoke_without_command=True)
    async def set_group(self, ctx: commands.Context) -> None:
        """Configure archive channel, log channel or reaction threshold."""
        if await self.manage_check(ctx):
            await ctx.send(code_block(self.help_text()))

    @set_group.command(name="pins")
    async def set_pins(self, ctx: commands.Context) -> None:
        """Set the archive channel pinned messages are mirrored into."""
        if not await self.manage_check(ctx):
            return
        channel = await self._mentioned_text_channel(ctx, "set pins <channel>")
        if channel is None:
            return
        settings = await self._settings(ctx)
        if settings is None:
            return

        was_configured = settings.is_configured
        settings.archive_channel_id = str(channel.id)
        await self._save_and_seed(ctx, settings, was_configured)

        log.info("archive_channel_set", guild_id=settings.guild_id, channel_id=str(channel.id))
        await ctx.send(
            "Successfully set pin channel! "
            "Make sure I have permission to manage webhooks for this channel!"
        )

    @set_group.command(name="logs")
    async def set_logs(self, ctx: commands.Context) -> None:
        """Set the channel pin and unpin notices go to."""
        if not await self.manage_check(ctx):
            return
        channel = await self._mentioned_text_channel(ctx, "set logs <channel>")
        if channel is None:
            return
        settings = await self._settings(ctx)
        if settings is None:
            return

        was_configured = settings.is_configured
        settings.log_channel_id = str(channel.id)
        await self._save_and_seed(ctx, settings, was_configured)

        log.info("log_channel_set", guild_id=settings.guild_id, channel_id=str(channel.id))
        await ctx.send("Successfully set log channel!")

    @set_group.command(name="reacts")
    async def set_reacts(self, ctx: commands.Context, *args: str) -> None:
        """Set how many pin reactions mirror a message (0 disables)."""
        if not await self.manage_check(ctx):
            return
        if len(args) != 1:
            await ctx.send(
                code_block(
                    f"Usage: {self.prefix}set reacts "
                    "<number of reactions required to auto-pin a message>"
                )
            )
            return

        try:
            threshold = int(args[0])
        except ValueError:
            await ctx.send("Not a number!")
            return
        if threshold < 0:
            await ctx.send("The number of reactions can't be negative!")
            return

        settings = await self._settings(ctx)
        if settings is None:
            return

        settings.reaction_threshold = threshold
        await self.bot.store.save(settings)  # type: ignore[union-attr]

        log.info("reaction_threshold_set", guild_id=settings.guild_id, threshold=threshold)
        await ctx.send("Successfully set react threshold!")

    # =========================================================================
    # unset
    # =========================================================================

    @commands.group(name="unset", invoke_without_command=True)
    async def unset_group(self, ctx: commands.Context) -> None:
        """Clear archive channel, log channel or reaction threshold."""
        if await self.manage_check(ctx):
            await ctx.send(code_block(self.help_text()))

    @unset_group.command(name="pins")
    async def unset_pins(self, ctx: commands.Context) -> None:
        if not await self.manage_check(ctx):
            return
        settings = await self._settings(ctx)
        if settings is None:
            return
        settings.archive_channel_id = None
        await self.bot.store.save(settings)  # type: ignore[union-attr]
        log.info("archive_channel_unset", guild_id=settings.guild_id)
        await ctx.send("Successfully unset pin channel!")

    @unset_group.command(name="logs")
    async def unset_logs(self, ctx: commands.Context) -> None:
        if not await self.manage_check(ctx):
            return
        settings = await self._settings(ctx)
        if settings is None:
            return
        settings.log_channel_id = None
        await self.bot.store.save(settings)  # type: ignore[union-attr]
        log.info("log_channel_unset", guild_id=settings.guild_id)
        await ctx.send("Successfully unset log channel!")

    @unset_group.command(name="reacts")
    async def unset_reacts(self, ctx: commands.Context) -> None:
        if not await self.manage_check(ctx):
            return
        settings = await self._settings(ctx)
        if settings is None:
            return
        settings.reaction_threshold = 0
        await self.bot.store.save(settings)  # type: ignore[union-attr]
        log.info("reaction_threshold_unset", guild_id=settings.guild_id)
        await ctx.send("Successfully unset react threshold")

    # =========================================================================
    # diag (operators only)
    # =========================================================================

    @commands.group(name="diag", invoke_without_command=True)
    async def diag_group(self, ctx: commands.Context) -> None:
        """Operator diagnostics: ``diag cache`` and ``diag settings``."""
        if self.config.is_operator(ctx.author.id):
            await ctx.send(code_block(f"{self.prefix}diag cache\n{self.prefix}diag settings"))

    @diag_group.command(name="cache")
    async def diag_cache(self, ctx: commands.Context) -> None:
        """Show pin cache size and this channel's cached pin count."""
        if not self.config.is_operator(ctx.author.id):
            return
        pin_engine = self.bot.pin_engine
        if pin_engine is None:
            await ctx.send("Pin engine is not running.")
            return

        snapshot = pin_engine.cache.get(ctx.channel.id)
        lines = [
            f"cached channels: {len(pin_engine.cache)}",
            f"this channel: {'not cached' if snapshot is None else f'{len(snapshot)} pins'}",
            f"detection mode: {self.config.detection.mode}",
        ]
        await ctx.send(code_block("\n".join(lines)))
        log.info("diag_cache_command", user=str(ctx.author))

    @diag_group.command(name="settings")
    async def diag_settings(self, ctx: commands.Context) -> None:
        """Show this guild's persisted settings record."""
        if not self.config.is_operator(ctx.author.id):
            return
        settings = await self._settings(ctx)
        if settings is None:
            return
        record = settings.to_record()
        # The full id list can exceed the message size limit
        record["pins"] = f"{len(settings.pins)} mirrored"
        await ctx.send(code_block(json.dumps(record, indent=2)))
        log.info("diag_settings_command", user=str(ctx.author))
