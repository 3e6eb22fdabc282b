"""Discord gateway glue for pinmirror.

``PinBot`` translates gateway events into calls on the ``PinEngine``:
guild and channel lifecycle keep the pin snapshot cache seeded, pins updates
go through change detection, and pin-emoji reactions go through the
reaction trigger. Prefix commands for guild configuration live in the
``SettingsCommands`` cog.

Errors inside event handlers never stop the bot: ``on_error`` logs the
traceback and DMs the configured operators a short notice.
"""

from __future__ import annotations

import asyncio
import signal
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any

import discord
from discord.ext import commands
from sqlalchemy.engine import Engine

from pinmirror.channels import is_text_channel
from pinmirror.engine import PinEngine
from pinmirror.logging import get_logger
from pinmirror.settings import SettingsStore

if TYPE_CHECKING:
    from pinmirror.config import Config

log = get_logger("bot")

# Keep operator DMs well under the 2000 character message limit
MAX_FAULT_REPORT_LENGTH = 1900


class PinBot(commands.Bot):
    """Discord bot that mirrors pinned messages into an archive channel.

    Attributes:
        config: Application configuration.
        engine: SQLAlchemy database engine. When None the bot connects but
            handles no pin or reaction events.
        store: Settings store over ``engine``.
        pin_engine: Pin detection and mirroring engine.
    """

    def __init__(self, config: Config, engine: Engine | None = None) -> None:
        """Request the message content and reaction intents and wire the engine."""
        intents = discord.Intents.default()
        intents.message_content = True  # Commands and pinned message text
        intents.reactions = True

        super().__init__(
            command_prefix=config.discord.command_prefix,
            intents=intents,
            help_command=None,
            allowed_mentions=discord.AllowedMentions.none(),
        )
        self.config = config
        self.engine = engine
        self._shutdown_requested = False

        self.store: SettingsStore | None = None
        self.pin_engine: PinEngine | None = None
        if engine is not None:
            self.store = SettingsStore(engine)
            self.pin_engine = PinEngine(config, self.store, self)

    async def setup_hook(self) -> None:
        """Load the settings commands cog."""
        from pinmirror.commands import SettingsCommands

        await self.add_cog(SettingsCommands(self))
        log.info("cog_loaded", cog="SettingsCommands")

    async def on_ready(self) -> None:
        """Set the presence and seed the pin cache of configured guilds.

        Without a seeded snapshot the first pins update after a restart would
        be read as a new pin.
        """
        log.info("discord_ready", user=str(self.user), guilds=len(self.guilds))

        await self.change_presence(activity=discord.Game(name=self.config.discord.activity))

        if self.pin_engine is not None and self.config.detection.seed_on_startup:
            seeded = await self.pin_engine.seed_configured_guilds()
            log.info("pin_cache_seeded", channels=seeded)

    async def on_disconnect(self) -> None:
        """Called when disconnected from Discord."""
        log.warning("discord_disconnected")

    async def on_resumed(self) -> None:
        """Called when connection resumed after disconnect."""
        log.info("discord_resumed")

    # =========================================================================
    # Lifecycle events
    # =========================================================================

    async def on_guild_join(self, guild: discord.Guild) -> None:
        if self.pin_engine is None:
            return
        await self.pin_engine.on_guild_join(guild)
        log.info("guild_joined", guild_id=str(guild.id), name=guild.name)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        if self.pin_engine is None:
            return
        await self.pin_engine.on_guild_remove(guild)
        log.info("guild_removed", guild_id=str(guild.id))

    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        if self.pin_engine is not None:
            await self.pin_engine.on_channel_create(channel)

    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        if self.pin_engine is not None:
            await self.pin_engine.on_channel_delete(channel)

    # =========================================================================
    # Pins and reactions
    # =========================================================================

    async def on_guild_channel_pins_update(
        self,
        channel: discord.abc.GuildChannel | discord.Thread,
        last_pin: datetime | None,
    ) -> None:
        """Run pin change detection for the channel."""
        if self.pin_engine is None or self._shutdown_requested:
            return
        await self.pin_engine.handle_pins_update(channel, last_pin)  # type: ignore[arg-type]

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        """Resolve a reaction event and hand it to the reaction trigger.

        Raw events are used so reactions on messages outside the message
        cache still count.
        """
        if self.pin_engine is None or self._shutdown_requested:
            return
        if payload.guild_id is None:
            return
        if not self.pin_engine.trigger.is_pin_emoji(payload.emoji):
            return

        channel = self.get_channel(payload.channel_id)
        if not is_text_channel(channel):
            return

        try:
            message = await channel.fetch_message(payload.message_id)  # type: ignore[union-attr]
        except discord.HTTPException as e:
            log.debug(
                "reaction_message_fetch_failed",
                message_id=str(payload.message_id),
                error=str(e),
            )
            return

        reactor = payload.member or discord.Object(id=payload.user_id)
        await self.pin_engine.handle_reaction_add(message, reactor, payload.emoji)

    # =========================================================================
    # Fault reporting
    # =========================================================================

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        """Log unexpected handler errors and notify operators.

        The bot keeps running; one failing event never takes down the loop.
        """
        exc = sys.exc_info()[1]
        log.error(
            "event_handler_failed",
            event=event_method,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        await self.report_fault(f"Unhandled error in {event_method}: {exc!r}")

    async def report_fault(self, text: str) -> int:
        """DM a fault notice to every configured operator.

        Returns:
            Number of operators reached.
        """
        if not self.config.discord.report_faults:
            return 0

        reached = 0
        for op_id in self.config.discord.operators.user_ids:
            try:
                user = await self.fetch_user(int(op_id))
                await user.send(f"```\n{text[:MAX_FAULT_REPORT_LENGTH]}\n```")
                reached += 1
            except (discord.HTTPException, ValueError) as e:
                log.warning("fault_report_failed", operator_id=op_id, error=str(e))
        return reached

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def graceful_shutdown(self) -> None:
        """Close persistence, then the Discord connection."""
        log.info("shutdown_initiated")
        self._shutdown_requested = True

        if self.engine is not None:
            self.engine.dispose()
            log.debug("database_closed")

        await self.close()
        await asyncio.sleep(0)  # Allow pending aiohttp callbacks to finalize
        log.info("shutdown_complete")


def setup_signal_handlers(bot: PinBot, loop: asyncio.AbstractEventLoop) -> None:
    """Route SIGINT and SIGTERM to ``PinBot.graceful_shutdown``.

    Args:
        bot: The PinBot instance to shut down.
        loop: The event loop to add signal handlers to.
    """

    def handle_signal(sig: signal.Signals) -> None:
        log.info("signal_received", signal=sig.name)
        loop.create_task(bot.graceful_shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    log.debug("signal_handlers_registered", signals=["SIGINT", "SIGTERM"])


async def run_bot(config: Config, engine: Engine | None = None) -> None:
    """Run the bot until shutdown.

    Args:
        config: Configuration; the token comes from ``config.discord_token``.
        engine: SQLAlchemy database engine for settings.
    """
    bot = PinBot(config, engine)
    loop = asyncio.get_running_loop()

    setup_signal_handlers(bot, loop)

    try:
        log.info("bot_starting")
        await bot.start(config.discord_token)  # type: ignore[arg-type]
    except asyncio.CancelledError:
        log.debug("bot_cancelled")
    finally:
        if not bot.is_closed():
            await bot.close()
