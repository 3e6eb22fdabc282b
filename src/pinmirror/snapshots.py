"""Per-channel cache of currently pinned messages.

The cache has no expiry. It is refreshed only when a pins update is handled
for the channel (the fresh snapshot always replaces the cached one), seeded
at startup for configured guilds, and evicted when channels or guilds go away.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import discord

PinSnapshot = dict[int, "discord.Message"]


class PinSnapshotCache:
    """Channel-keyed store of pin snapshots owned by one engine instance.

    A snapshot is an ordered mapping of message id to message, newest pin
    first, mirroring the order the platform returns pins in. Messages are kept
    (not just ids) so that unpin notices can describe the removed message.
    """

    def __init__(self) -> None:
        self._snapshots: dict[int, PinSnapshot] = {}

    def get(self, channel_id: int) -> PinSnapshot | None:
        """Return the cached snapshot, or None if the channel was never seen."""
        return self._snapshots.get(channel_id)

    def set(self, channel_id: int, messages: Sequence[discord.Message]) -> PinSnapshot:
        """Replace the channel's snapshot with the given pinned messages."""
        snapshot = {message.id: message for message in messages}
        self._snapshots[channel_id] = snapshot
        return snapshot

    def evict(self, channel_id: int) -> bool:
        """Drop a channel's snapshot. Returns True if one was cached."""
        return self._snapshots.pop(channel_id, None) is not None

    def evict_many(self, channel_ids: Iterable[int]) -> int:
        """Drop several snapshots. Returns how many were cached."""
        return sum(1 for channel_id in channel_ids if self.evict(channel_id))

    def clear(self) -> None:
        self._snapshots.clear()

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
