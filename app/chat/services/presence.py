"""
Presence and typing signals.

Presence is a single row per user, overwritten on every update. Typing is
never stored: it is fanned out to the thread's channel-layer group and
receivers expire it after TYPING_CONFIG.TIMEOUT_SECONDS.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from chat.constants import PRESENCE_CONFIG, REALTIME_CONFIG
from chat.events import broadcast_to_thread
from chat.models import ChatSettings, Presence, PresenceStatus
from chat.services.access import get_member_thread
from core.exceptions import ErrorCode
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


@dataclass(frozen=True)
class PresenceInfo:
    """Presence as exposed to a viewer."""

    user_id: int
    status: str
    status_message: str = ""
    last_seen_at: datetime | None = None

    @classmethod
    def offline(cls, user_id: int) -> PresenceInfo:
        return cls(user_id=user_id, status=PresenceStatus.OFFLINE)


class PresenceService(BaseService):
    """
    Service for presence.

    Methods:
        set_presence: Upsert status, status message and last_seen_at
        heartbeat: Refresh last_seen_at (and come back online)
        get_presence: Presence of a user as seen by a viewer
        mark_stale_offline: Flip silent users to offline
    """

    @classmethod
    def set_presence(
        cls,
        user: User,
        status: str = PRESENCE_CONFIG.DEFAULT_STATUS,
        status_message: str = "",
    ) -> ServiceResult[Presence]:
        if status not in PresenceStatus.values:
            return ServiceResult.failure(
                f"Unknown presence status: {status}",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        presence, _ = Presence.objects.update_or_create(
            user=user,
            defaults={
                "status": status,
                "status_message": (status_message or "")[
                    : PRESENCE_CONFIG.MAX_STATUS_MESSAGE_LENGTH
                ],
                "last_seen_at": timezone.now(),
            },
        )
        cls.get_logger().debug(f"User {user.pk} presence set to {status}")
        return ServiceResult.success(presence)

    @classmethod
    def heartbeat(cls, user: User) -> ServiceResult[Presence]:
        """
        Refresh last_seen_at.

        A user previously marked offline by the stale sweep comes back
        online; an explicit away/busy status is kept.
        """
        presence, created = Presence.objects.get_or_create(user=user)
        if created:
            return ServiceResult.success(presence)

        presence.last_seen_at = timezone.now()
        if presence.status == PresenceStatus.OFFLINE:
            presence.status = PresenceStatus.ONLINE
        presence.save(update_fields=["status", "last_seen_at"])
        return ServiceResult.success(presence)

    @classmethod
    def get_presence(cls, viewer: User, user_id: int) -> ServiceResult[PresenceInfo]:
        """
        Presence of user_id as seen by viewer.

        Missing rows read as offline with no last_seen_at. Users who hide
        their online status read as offline to everyone but themselves.
        """
        presence = Presence.objects.filter(user_id=user_id).first()
        if presence is None:
            return ServiceResult.success(PresenceInfo.offline(user_id))

        if viewer.pk != user_id and not ChatSettings.for_user(user_id).show_online_status:
            return ServiceResult.success(PresenceInfo.offline(user_id))

        return ServiceResult.success(
            PresenceInfo(
                user_id=user_id,
                status=presence.status,
                status_message=presence.status_message,
                last_seen_at=presence.last_seen_at,
            )
        )

    @classmethod
    def mark_stale_offline(cls, now=None) -> int:
        """Set users silent for longer than STALE_AFTER_SECONDS to offline."""
        now = now or timezone.now()
        cutoff = now - timedelta(seconds=PRESENCE_CONFIG.STALE_AFTER_SECONDS)
        updated = (
            Presence.objects.exclude(status=PresenceStatus.OFFLINE)
            .filter(last_seen_at__lt=cutoff)
            .update(status=PresenceStatus.OFFLINE)
        )
        if updated:
            cls.get_logger().info(f"Marked {updated} stale presences offline")
        return updated


class TypingService(BaseService):
    """Ephemeral typing indicators."""

    @classmethod
    def broadcast(cls, user: User, thread_id, is_typing: bool) -> ServiceResult[bool]:
        """
        Fan a typing state out to the thread's group.

        Returns success(False) without broadcasting when the user disabled
        show_typing_indicators. Nothing is persisted.
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, _member = lookup.data

        if not ChatSettings.for_user(user.pk).show_typing_indicators:
            return ServiceResult.success(False)

        broadcast_to_thread(
            thread.id,
            REALTIME_CONFIG.EVENT_TYPING,
            {"thread_id": str(thread.id), "user_id": user.pk, "is_typing": bool(is_typing)},
        )
        return ServiceResult.success(True)
