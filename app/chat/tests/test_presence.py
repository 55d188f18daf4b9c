"""
Tests for presence and typing.

Features tested:
- Presence upsert, heartbeat and stale sweep
- Privacy: hidden online status reads as offline to others
- Typing fan-out and the show_typing_indicators preference

Design Decisions:
- One Presence row per user, overwritten in place
- Typing is never persisted; it only reaches the channel layer
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from chat.constants import PRESENCE_CONFIG
from chat.models import ChatSettings, Presence, PresenceStatus
from chat.services import PresenceService, TypingService
from core.exceptions import ErrorCode


# =============================================================================
# Presence
# =============================================================================


class TestSetPresence:
    def test_upserts_single_row(self, db, member_user):
        """
        Every update overwrites the same row.

        Why it matters: Presence has no history; only the latest state counts.
        """
        PresenceService.set_presence(member_user, PresenceStatus.ONLINE)
        result = PresenceService.set_presence(member_user, PresenceStatus.BUSY, "In clinic")

        assert result.success is True
        assert Presence.objects.filter(user=member_user).count() == 1
        presence = Presence.objects.get(user=member_user)
        assert presence.status == PresenceStatus.BUSY
        assert presence.status_message == "In clinic"

    def test_unknown_status(self, db, member_user):
        result = PresenceService.set_presence(member_user, "invisible")

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_status_message_truncated(self, db, member_user):
        PresenceService.set_presence(member_user, PresenceStatus.AWAY, "x" * 500)

        presence = Presence.objects.get(user=member_user)
        assert len(presence.status_message) == PRESENCE_CONFIG.MAX_STATUS_MESSAGE_LENGTH


class TestHeartbeat:
    def test_creates_online_row(self, db, member_user):
        result = PresenceService.heartbeat(member_user)

        assert result.data.status == PresenceStatus.ONLINE

    def test_brings_offline_user_back_online(self, db, member_user):
        Presence.objects.create(user=member_user, status=PresenceStatus.OFFLINE)

        result = PresenceService.heartbeat(member_user)

        assert result.data.status == PresenceStatus.ONLINE

    def test_keeps_explicit_status(self, db, member_user):
        with freeze_time("2026-01-01 08:00:00"):
            Presence.objects.create(user=member_user, status=PresenceStatus.BUSY)

        result = PresenceService.heartbeat(member_user)

        assert result.data.status == PresenceStatus.BUSY
        assert result.data.last_seen_at > timezone.now() - timedelta(minutes=1)


class TestGetPresence:
    def test_missing_row_is_offline(self, db, member_user, other_user):
        info = PresenceService.get_presence(member_user, other_user.pk).data

        assert info.status == PresenceStatus.OFFLINE
        assert info.last_seen_at is None

    def test_visible_presence(self, db, member_user, other_user):
        PresenceService.set_presence(other_user, PresenceStatus.AWAY, "Lunch")

        info = PresenceService.get_presence(member_user, other_user.pk).data

        assert info.status == PresenceStatus.AWAY
        assert info.status_message == "Lunch"
        assert info.last_seen_at is not None

    def test_hidden_status_reads_offline_to_others(self, db, member_user, other_user):
        """
        show_online_status=False hides presence from everyone else.

        Why it matters: Providers may not want patients to see when they
        are online.
        """
        PresenceService.set_presence(other_user, PresenceStatus.ONLINE)
        ChatSettings.objects.create(user=other_user, show_online_status=False)

        others_view = PresenceService.get_presence(member_user, other_user.pk).data
        own_view = PresenceService.get_presence(other_user, other_user.pk).data

        assert others_view.status == PresenceStatus.OFFLINE
        assert others_view.last_seen_at is None
        assert own_view.status == PresenceStatus.ONLINE


class TestMarkStaleOffline:
    def test_flips_silent_users(self, db, member_user, other_user, owner_user):
        now = timezone.now()
        stale = now - timedelta(seconds=PRESENCE_CONFIG.STALE_AFTER_SECONDS + 1)
        Presence.objects.create(user=member_user, last_seen_at=stale)
        Presence.objects.create(user=other_user, last_seen_at=now)
        Presence.objects.create(user=owner_user, status=PresenceStatus.OFFLINE, last_seen_at=stale)

        assert PresenceService.mark_stale_offline(now) == 1

        assert Presence.objects.get(user=member_user).status == PresenceStatus.OFFLINE
        assert Presence.objects.get(user=other_user).status == PresenceStatus.ONLINE


# =============================================================================
# Typing
# =============================================================================


class TestTyping:
    @pytest.fixture
    def broadcast(self):
        with patch("chat.services.presence.broadcast_to_thread") as mock:
            yield mock

    def test_broadcasts_immediately(self, db, group_thread, member_user, broadcast):
        result = TypingService.broadcast(member_user, group_thread.id, True)

        assert result.data is True
        broadcast.assert_called_once_with(
            group_thread.id,
            "typing",
            {"thread_id": str(group_thread.id), "user_id": member_user.pk, "is_typing": True},
        )

    def test_respects_preference(self, db, group_thread, member_user, broadcast):
        ChatSettings.objects.create(user=member_user, show_typing_indicators=False)

        result = TypingService.broadcast(member_user, group_thread.id, True)

        assert result.success is True
        assert result.data is False
        broadcast.assert_not_called()

    def test_outsider_not_found(self, db, group_thread, outsider, broadcast):
        result = TypingService.broadcast(outsider, group_thread.id, True)

        assert result.error_code == ErrorCode.NOT_FOUND
        broadcast.assert_not_called()
