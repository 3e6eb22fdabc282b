"""Helpers for deciding which channels the engine works with."""

from __future__ import annotations

import inspect

import discord

from pinmirror.models import GuildSettings


def is_text_channel(channel: object) -> bool:
    """True for guild text channels (the only kind that can be mirrored)."""
    return isinstance(channel, discord.TextChannel)


def can_view(channel: discord.abc.GuildChannel) -> bool:
    """Check whether the bot can see a channel."""
    return channel.permissions_for(channel.guild.me).view_channel


def can_send(channel: discord.abc.GuildChannel) -> bool:
    """Check whether the bot can post in a channel."""
    return channel.permissions_for(channel.guild.me).send_messages


def is_eligible_channel(channel: object, settings: GuildSettings) -> bool:
    """Check whether messages in a channel may be mirrored.

    The archive channel itself is never a source, so mirrored copies are
    not mirrored again when someone pins or reacts to them.
    """
    if not is_text_channel(channel):
        return False
    return str(channel.id) != settings.archive_channel_id  # type: ignore[attr-defined]


async def fetch_pins(channel: discord.TextChannel) -> list[discord.Message]:
    """Fetch a channel's pinned messages, newest first.

    Newer discord.py releases return an async iterator from ``pins()`` that
    stops at ``limit`` (50 by default) unless ``limit=None`` is passed; older
    ones return an awaitable list of every pin.
    """
    if "limit" in inspect.signature(channel.pins).parameters:
        pins = channel.pins(limit=None)
    else:
        pins = channel.pins()
    if hasattr(pins, "__aiter__"):
        return [message async for message in pins]
    return list(await pins)
