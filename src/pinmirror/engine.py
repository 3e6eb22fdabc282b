"""Pin change detection and attribution engine.

The engine owns the pin snapshot cache and wires the detector, the
impersonation publisher, the log publisher and the reaction trigger
together. Gateway handlers on the bot call into it; nothing here reads
module-level state.

Each source channel has its own ``asyncio.Lock``. Fetching the pin list,
classifying it, publishing and writing the new snapshot all happen under
that lock, as does the check-publish-append sequence of the reaction path,
so two events for the same channel cannot interleave between reading and
writing the cache or the mirrored list.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

import discord

from pinmirror.channels import can_view, fetch_pins, is_eligible_channel, is_text_channel
from pinmirror.detector import classify_pins, is_recent_pin
from pinmirror.logging import get_logger
from pinmirror.models import GuildSettings, PinChange, PinDelta
from pinmirror.pinlog import LogPublisher
from pinmirror.publisher import ImpersonationPublisher
from pinmirror.reactions import ReactionTrigger
from pinmirror.snapshots import PinSnapshotCache

if TYPE_CHECKING:
    from pinmirror.config import Config
    from pinmirror.settings import SettingsStore

log = get_logger("engine")


class PinEngine:
    """Tracks pins per channel and mirrors newly pinned messages.

    Attributes:
        config: Application configuration.
        store: Settings store.
        client: Discord client used to resolve channels.
        cache: Pin snapshots keyed by channel id.
        publisher: Impersonation publisher for the archive channel.
        log_publisher: Pin notice publisher for the log channel.
        trigger: Reaction auto-pin trigger.
    """

    def __init__(
        self,
        config: Config,
        store: SettingsStore,
        client: discord.Client,
        publisher: ImpersonationPublisher | None = None,
        log_publisher: LogPublisher | None = None,
        trigger: ReactionTrigger | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.client = client
        self.cache = PinSnapshotCache()
        self.publisher = publisher or ImpersonationPublisher(store, config, client)
        self.log_publisher = log_publisher or LogPublisher(client)
        self.trigger = trigger or ReactionTrigger(config)
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, channel_id: int) -> asyncio.Lock:
        lock = self._locks.get(channel_id)
        if lock is None:
            lock = self._locks[channel_id] = asyncio.Lock()
        return lock

    # =========================================================================
    # Cache seeding and teardown
    # =========================================================================

    async def seed_channel(self, channel: discord.TextChannel) -> bool:
        """Cache a channel's current pins.

        Returns:
            True if the snapshot was fetched and cached.
        """
        if not is_text_channel(channel) or not can_view(channel):
            return False

        async with self._lock_for(channel.id):
            try:
                pins = await fetch_pins(channel)
            except discord.HTTPException as e:
                log.debug("seed_channel_failed", channel_id=str(channel.id), error=str(e))
                return False
            self.cache.set(channel.id, pins)

        log.debug("channel_seeded", channel_id=str(channel.id), pins=len(pins))
        return True

    async def seed_guild(self, guild: discord.Guild) -> int:
        """Cache pins for every viewable text channel in a guild.

        Returns:
            Number of channels seeded.
        """
        seeded = 0
        for channel in guild.text_channels:
            if await self.seed_channel(channel):
                seeded += 1

        log.info("guild_seeded", guild_id=str(guild.id), channels=seeded)
        return seeded

    async def seed_configured_guilds(self) -> int:
        """Seed every guild that has an archive or log channel configured.

        Run at startup so the first pins update after a restart is compared
        against a real snapshot instead of an empty one.
        """
        total = 0
        for guild_id in await self.store.configured_guild_ids():
            guild = self.client.get_guild(int(guild_id))
            if guild is None:
                log.debug("configured_guild_unavailable", guild_id=guild_id)
                continue
            total += await self.seed_guild(guild)
        return total

    async def on_guild_join(self, guild: discord.Guild) -> GuildSettings:
        """Create the guild's settings record."""
        settings = await self.store.create(guild.id)
        if settings.is_configured:
            await self.seed_guild(guild)
        return settings

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        """Delete the guild's settings and forget its channels."""
        await self.store.delete(guild.id)
        channel_ids = [channel.id for channel in guild.channels]
        evicted = self.cache.evict_many(channel_ids)
        for channel_id in channel_ids:
            self._locks.pop(channel_id, None)
        log.info("guild_forgotten", guild_id=str(guild.id), channels_evicted=evicted)

    async def on_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        """Seed a new text channel when its guild is configured."""
        if not is_text_channel(channel):
            return
        settings = await self.store.get(channel.guild.id)
        if settings.is_configured:
            await self.seed_channel(channel)  # type: ignore[arg-type]

    async def on_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        """Forget a deleted channel's snapshot."""
        self.cache.evict(channel.id)
        self._locks.pop(channel.id, None)

    # =========================================================================
    # Pin updates
    # =========================================================================

    async def handle_pins_update(
        self,
        channel: discord.abc.GuildChannel,
        last_pin: datetime | None = None,
    ) -> PinDelta | None:
        """Handle a pins update for a channel.

        Args:
            channel: Channel whose pins changed.
            last_pin: Timestamp of the newest pin, as sent by the gateway.

        Returns:
            The classified change, or None when the update was ignored.
        """
        if not is_text_channel(channel):
            return None

        settings = await self.store.get(channel.guild.id)
        if not settings.is_configured:
            return None

        if self.config.detection.mode == "timing":
            return await self._handle_pins_update_timing(settings, channel, last_pin)  # type: ignore[arg-type]

        async with self._lock_for(channel.id):
            try:
                current = await fetch_pins(channel)  # type: ignore[arg-type]
            except discord.HTTPException as e:
                log.warning("pins_fetch_failed", channel_id=str(channel.id), error=str(e))
                return None

            delta = classify_pins(self.cache.get(channel.id), current)
            try:
                await self._apply(settings, channel, delta)
            finally:
                self.cache.set(channel.id, current)

        log.debug(
            "pins_update_handled",
            channel_id=str(channel.id),
            change=delta.change.value,
            pins=len(current),
        )
        return delta

    async def _handle_pins_update_timing(
        self,
        settings: GuildSettings,
        channel: discord.TextChannel,
        last_pin: datetime | None,
    ) -> PinDelta | None:
        """Legacy detection: a fresh ``last_pin`` means the newest pin is new.

        Unpins are never detected in this mode.
        """
        if not is_recent_pin(last_pin, window_seconds=self.config.detection.timing_window_seconds):
            log.debug("pins_update_not_recent", channel_id=str(channel.id))
            return PinDelta(change=PinChange.NONE)

        async with self._lock_for(channel.id):
            try:
                current = await fetch_pins(channel)
            except discord.HTTPException as e:
                log.warning("pins_fetch_failed", channel_id=str(channel.id), error=str(e))
                return None

            if not current:
                return PinDelta(change=PinChange.NONE)

            delta = PinDelta(change=PinChange.ADDED, added=current[0])
            try:
                await self._apply(settings, channel, delta)
            finally:
                self.cache.set(channel.id, current)

        return delta

    async def _apply(
        self,
        settings: GuildSettings,
        channel: discord.abc.GuildChannel,
        delta: PinDelta,
    ) -> None:
        if delta.change is PinChange.ADDED and delta.added is not None:
            message = delta.added
            log.info("pin_added", channel_id=str(channel.id), message_id=str(message.id))
            if settings.log_channel_id:
                await self.log_publisher.publish(settings, message, channel, pinned=True)
            if settings.archive_channel_id:
                await self._mirror(settings, message)

        elif delta.change is PinChange.REMOVED:
            for message in delta.removed:
                log.info("pin_removed", channel_id=str(channel.id), message_id=str(message.id))
                if settings.log_channel_id:
                    await self.log_publisher.publish(settings, message, channel, pinned=False)

    async def _mirror(self, settings: GuildSettings, message: discord.Message) -> bool:
        """Mirror a message unless it already was. Call under the channel lock."""
        if settings.archive_channel_id is None:
            return False

        if not is_eligible_channel(message.channel, settings):
            log.debug("mirror_skipped_ineligible", message_id=str(message.id))
            return False

        # The store is re-read here; ``settings`` may predate a concurrent mirror
        if settings.is_mirrored(message.id) or await self.store.is_mirrored(
            settings.guild_id, message.id
        ):
            log.debug("mirror_skipped_duplicate", message_id=str(message.id))
            return False

        archive_channel = self.client.get_channel(int(settings.archive_channel_id))
        if archive_channel is None:
            log.warning(
                "archive_channel_missing",
                guild_id=settings.guild_id,
                archive_channel_id=settings.archive_channel_id,
            )
            return False

        return await self.publisher.publish(settings, archive_channel, message)  # type: ignore[arg-type]

    # =========================================================================
    # Reactions
    # =========================================================================

    async def handle_reaction_add(
        self,
        message: discord.Message,
        reactor: discord.abc.Snowflake,
        emoji: discord.PartialEmoji | discord.Emoji | str,
    ) -> bool:
        """Mirror a message once enough members react with the pin emoji.

        Args:
            message: The reacted-to message, with current reactions.
            reactor: The user who added the reaction.
            emoji: The emoji that was added.

        Returns:
            True if the message was mirrored by this reaction.
        """
        if message.guild is None or not self.trigger.is_pin_emoji(emoji):
            return False

        settings = await self.store.get(message.guild.id)
        if not await self.trigger.should_fire(settings, message, reactor, emoji):
            return False

        async with self._lock_for(message.channel.id):
            mirrored = await self._mirror(settings, message)

        if mirrored:
            log.info(
                "reaction_threshold_mirrored",
                message_id=str(message.id),
                threshold=settings.reaction_threshold,
            )
        return mirrored
