"""
Tests for the periodic messaging tasks.

Tasks run eagerly (CELERY_TASK_ALWAYS_EAGER in the root conftest).
"""

from datetime import timedelta
from unittest.mock import patch

from django.utils import timezone

from chat.models import Presence, PresenceStatus, ThreadMember
from chat.services import AttachmentService
from chat.tasks import (
    expire_mutes,
    mark_stale_presence_offline,
    reconcile_pending_attachments,
)


class TestReconcilePendingAttachments:
    def test_delegates_to_service(self, db):
        counts = {"uploaded": 1, "orphaned": 0, "pending": 0, "errors": 0}

        with patch.object(AttachmentService, "reconcile_pending", return_value=counts) as mock:
            result = reconcile_pending_attachments.delay()

        assert result.get() == counts
        mock.assert_called_once_with()

    def test_no_pending_rows(self, db):
        result = reconcile_pending_attachments.delay()

        assert result.get() == {"uploaded": 0, "orphaned": 0, "pending": 0, "errors": 0}


class TestExpireMutes:
    def test_unmutes_expired_memberships(self, db, group_thread, member_user):
        ThreadMember.objects.filter(thread=group_thread, user=member_user).update(
            muted=True, muted_until=timezone.now() - timedelta(minutes=1)
        )

        assert expire_mutes.delay().get() == 1

        membership = ThreadMember.objects.get(thread=group_thread, user=member_user)
        assert membership.muted is False
        assert membership.muted_until is None


class TestMarkStalePresenceOffline:
    def test_flips_stale_rows(self, db, member_user):
        Presence.objects.create(
            user=member_user, last_seen_at=timezone.now() - timedelta(hours=1)
        )

        assert mark_stale_presence_offline.delay().get() == 1
        assert Presence.objects.get(user=member_user).status == PresenceStatus.OFFLINE
