"""
Celery tasks for the messaging core.

This module defines periodic tasks for:
- Attachment reconciliation (pending -> uploaded/orphaned)
- Mute expiry
- Stale presence cleanup

Schedules live in settings.CELERY_BEAT_SCHEDULE.

Usage:
    from chat.tasks import reconcile_pending_attachments

    reconcile_pending_attachments.delay()
"""

import logging

from celery import shared_task
from django.db import DatabaseError

from core.exceptions import UpstreamFailureError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(DatabaseError, UpstreamFailureError),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def reconcile_pending_attachments(self) -> dict:
    """
    Resolve pending attachments older than the grace period.

    Rows whose bytes reached storage become uploaded; rows still without
    bytes after a day become orphaned. Rows are never deleted.

    Returns:
        Counts keyed by "uploaded", "orphaned", "pending", "errors"
    """
    from chat.services import AttachmentService

    return AttachmentService.reconcile_pending()


@shared_task(
    bind=True,
    autoretry_for=(DatabaseError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def expire_mutes(self) -> int:
    """
    Unmute members whose muted_until has passed.

    Returns:
        Number of memberships unmuted
    """
    from chat.services import ThreadService

    return ThreadService.expire_mutes()


@shared_task(
    bind=True,
    autoretry_for=(DatabaseError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def mark_stale_presence_offline(self) -> int:
    """
    Flip users who stopped sending heartbeats to offline.

    Returns:
        Number of presence rows updated
    """
    from chat.services import PresenceService

    return PresenceService.mark_stale_offline()
