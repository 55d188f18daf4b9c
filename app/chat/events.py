"""
Real-time fan-out for thread events.

Each thread has one channel layer group ("thread_<id>"). Services publish
after their transaction commits; ThreadConsumer relays every event to its
socket as {"type": <event>, "payload": {...}}.

Delivery is at least once and may be reordered. Payloads always carry ids
and timestamps so receivers can dedupe and compare.

Usage:
    from chat.events import broadcast_on_commit
    from chat.constants import REALTIME_CONFIG

    broadcast_on_commit(
        thread.id,
        REALTIME_CONFIG.EVENT_MESSAGE_CREATED,
        {"message": message_payload(message)},
    )
"""

from __future__ import annotations

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from chat.constants import REALTIME_CONFIG

logger = logging.getLogger(__name__)


def thread_group_name(thread_id) -> str:
    return f"{REALTIME_CONFIG.GROUP_PREFIX}_{thread_id}"


def broadcast_to_thread(thread_id, event: str, payload: dict) -> None:
    """
    Send an event to every socket subscribed to the thread.

    Publishing failures are logged, never raised. The mutation that
    produced the event has already committed.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning(f"No channel layer configured; dropping {event} event")
        return

    try:
        async_to_sync(channel_layer.group_send)(
            thread_group_name(thread_id),
            {"type": "thread.event", "event": event, "payload": payload},
        )
    except Exception:
        logger.exception(f"Failed to broadcast {event} to thread {thread_id}")


def broadcast_on_commit(thread_id, event: str, payload: dict) -> None:
    """Broadcast once the surrounding transaction commits."""
    transaction.on_commit(lambda: broadcast_to_thread(thread_id, event, payload))
