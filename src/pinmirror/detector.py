"""Pin change classification.

A pins update from the gateway only says that *something* changed in a
channel's pin list. ``classify_pins`` turns two snapshots of that list into a
``PinDelta`` using nothing but their sizes, then identifies the message(s)
involved.

``is_recent_pin`` is the older timing heuristic: a pins update whose
timestamp is within a short window of now is assumed to be a new pin. It is
strictly weaker (it never sees unpins) and is only used when
``detection.mode`` is ``timing``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pinmirror.models import PinChange, PinDelta

if TYPE_CHECKING:
    import discord


def classify_pins(
    previous: Mapping[int, discord.Message] | None,
    current: Sequence[discord.Message],
) -> PinDelta:
    """Classify a transition between two pin snapshots of one channel.

    Args:
        previous: Cached snapshot keyed by message id, or None when the
            channel has no cached snapshot (treated as empty).
        current: Freshly fetched pins, newest first.

    Returns:
        ADDED with the newest pin when the list grew, REMOVED with every
        message missing from ``current`` when it shrank, NONE otherwise.
    """
    previous = previous or {}

    if len(current) > len(previous):
        return PinDelta(change=PinChange.ADDED, added=current[0])

    if len(current) < len(previous):
        current_ids = {message.id for message in current}
        removed = [
            message
            for message_id, message in previous.items()
            if message_id not in current_ids
        ]
        return PinDelta(change=PinChange.REMOVED, removed=removed)

    return PinDelta(change=PinChange.NONE)


def is_recent_pin(
    last_pin: datetime | None,
    now: datetime | None = None,
    window_seconds: float = 2.0,
) -> bool:
    """Legacy heuristic: was this pins update caused by a new pin?

    Args:
        last_pin: Timestamp of the most recent pin reported by the gateway,
            None when the channel has no pins left.
        now: Reference time, defaults to the current UTC time.
        window_seconds: How close ``last_pin`` must be to ``now``.
    """
    if last_pin is None:
        return False

    now = now or datetime.now(timezone.utc)
    if last_pin.tzinfo is None:
        last_pin = last_pin.replace(tzinfo=timezone.utc)

    return abs((now - last_pin).total_seconds()) <= window_seconds
