"""
Constants and configuration for the messaging core.

This module centralizes configuration values for:
- Message operations (pagination, search, content limits)
- Thread management (group sizes, mute presets, thread info limits)
- Attachment handling (size limit, path sanitising, grant lifetimes)
- Presence and typing signals
- Real-time fan-out

Grant lifetimes can be overridden via Django settings
(CHAT_UPLOAD_URL_TTL_SECONDS, CHAT_DOWNLOAD_URL_TTL_SECONDS).

Import example:
    from chat.constants import MESSAGE_CONFIG, ATTACHMENT_CONFIG
"""

import re
from datetime import timedelta
from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters

    # Pagination
    DEFAULT_PAGE_SIZE: Final[int] = 40
    MAX_PAGE_SIZE: Final[int] = 80

    # Search
    SEARCH_MAX_RESULTS: Final[int] = 50

    # Preview labels for messages without displayable content
    PREVIEW_LABELS: Final[dict] = {
        "image": "[image]",
        "file": "[file]",
        "system": "[system]",
        "deleted": "[deleted]",
    }


# =============================================================================
# Thread Configuration
# =============================================================================


class THREAD_CONFIG:
    """Configuration for thread and membership management."""

    MIN_GROUP_MEMBERS: Final[int] = 2
    MAX_TITLE_LENGTH: Final[int] = 200

    # threadInfo limits
    RECENT_ATTACHMENTS_LIMIT: Final[int] = 30
    PINNED_MESSAGES_LIMIT: Final[int] = 20

    # Mute presets; None means "until unmuted"
    MUTE_DURATIONS: Final[dict] = {
        "1h": timedelta(hours=1),
        "8h": timedelta(hours=8),
        "24h": timedelta(hours=24),
        "forever": None,
    }


# =============================================================================
# Attachment Configuration
# =============================================================================


class ATTACHMENT_CONFIG:
    """Configuration for message attachments."""

    MAX_FILE_SIZE_BYTES: Final[int] = 15 * 1024 * 1024  # 15 MB
    MAX_ATTACHMENTS_PER_MESSAGE: Final[int] = 10
    MAX_FILE_NAME_LENGTH: Final[int] = 255

    # Anything outside word characters, dots and dashes becomes "_"
    UNSAFE_FILE_NAME_PATTERN: Final[re.Pattern] = re.compile(r"[^\w.\-]+")

    # Grant lifetimes (seconds)
    UPLOAD_URL_TTL_SECONDS: Final[int] = 300
    DOWNLOAD_URL_TTL_SECONDS: Final[int] = 60

    # Orphan reconciliation
    ORPHAN_GRACE_MINUTES: Final[int] = 60
    ORPHAN_GIVE_UP_HOURS: Final[int] = 24
    RECONCILE_BATCH_SIZE: Final[int] = 200


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for presence tracking."""

    DEFAULT_STATUS: Final[str] = "online"
    MAX_STATUS_MESSAGE_LENGTH: Final[int] = 140

    # How often clients should send a heartbeat
    HEARTBEAT_INTERVAL_SECONDS: Final[int] = 30

    # Online users silent for longer than this are marked offline
    STALE_AFTER_SECONDS: Final[int] = 120


# =============================================================================
# Typing Configuration
# =============================================================================


class TYPING_CONFIG:
    """Configuration for typing indicators."""

    # Receivers clear a typing state after this long without renewal
    TIMEOUT_SECONDS: Final[float] = 3.0


# =============================================================================
# Real-time Configuration
# =============================================================================


class REALTIME_CONFIG:
    """Channel layer group naming and event types."""

    GROUP_PREFIX: Final[str] = "thread"

    EVENT_MESSAGE_CREATED: Final[str] = "message.created"
    EVENT_MESSAGE_UPDATED: Final[str] = "message.updated"
    EVENT_MESSAGE_HIDDEN: Final[str] = "message.hidden"
    EVENT_READ_UPDATED: Final[str] = "read.updated"
    EVENT_TYPING: Final[str] = "typing"
    EVENT_THREAD_UPDATED: Final[str] = "thread.updated"

    # WebSocket close codes
    CLOSE_UNAUTHENTICATED: Final[int] = 4001
    CLOSE_NOT_MEMBER: Final[int] = 4003
    CLOSE_NOT_FOUND: Final[int] = 4004
