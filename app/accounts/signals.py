"""
Signal handlers for accounts.

- Auto-create a Profile when a User is created
- Drop cached directory identities when a Profile or User changes
"""

import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from accounts.models import Profile

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_user_profile(sender, instance, created, **kwargs):
    """Create an empty Profile for newly created users."""
    if created:
        Profile.objects.get_or_create(user=instance)
        logger.debug(f"Profile created for user: {instance.pk}")


@receiver(post_save, sender=Profile)
def invalidate_directory_entry(sender, instance, **kwargs):
    """Evict the cached identity so the next lookup reads the new values."""
    from accounts.services import DirectoryService

    DirectoryService.invalidate(instance.user_id)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def invalidate_on_user_change(sender, instance, created, **kwargs):
    """Deactivation changes search visibility; keep the cache honest."""
    if not created:
        from accounts.services import DirectoryService

        DirectoryService.invalidate(instance.pk)
