"""
Thread Store service.

Owns thread entities, membership rows and the threads-for-a-user read
model.

Services:
    ThreadService: Thread lifecycle (open direct, create group, mute, pin,
        delete) and read models (list_for_user, thread_info)
    MembershipService: Group membership (leave, add, remove, roles)

Invariants:
    - A direct thread has exactly 2 active members: it cannot be left, and
      at most one exists per unordered user pair (DirectThreadPair)
    - A group has at least 2 active members: removals that would break this
      are rejected, and a leave that breaks it dissolves the group
    - Membership rows are never deleted; leaving sets left_at

System messages record group creation, membership changes, role changes and
ownership transfers (see SystemMessageEvent).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone

from accounts.services import DirectoryEntry, DirectoryService
from chat.constants import REALTIME_CONFIG, THREAD_CONFIG
from chat.events import broadcast_on_commit
from chat.models import (
    Attachment,
    ChatBlock,
    ChatSettings,
    DirectThreadPair,
    MemberRole,
    Message,
    PinnedMessage,
    PinnedThread,
    SystemMessageEvent,
    Thread,
    ThreadMember,
    ThreadType,
    WhoCanContact,
)
from chat.permissions import (
    can_change_role,
    can_delete_group,
    can_manage_members,
    can_remove_member,
)
from chat.services.access import get_member_thread
from chat.services.attachments import AttachmentService
from chat.services.messages import MessageService
from core.exceptions import ErrorCode
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


# =============================================================================
# Read models
# =============================================================================


@dataclass
class ThreadSummary:
    """One row of list_for_user()."""

    thread: Thread
    role: str
    muted: bool
    muted_until: datetime | None
    is_pinned: bool
    unread_count: int
    last_message: Message | None
    other_user: dict | None
    member_count: int
    activity_at: datetime


@dataclass
class ThreadInfo:
    """Members, recent attachments and the caller's pins for one thread."""

    thread: Thread
    members: list[ThreadMember]
    identities: dict[int, DirectoryEntry]
    recent_attachments: list[Attachment] = field(default_factory=list)
    pinned_messages: list[Message] = field(default_factory=list)


def thread_updated(thread: Thread, reason: str) -> None:
    broadcast_on_commit(
        thread.id,
        REALTIME_CONFIG.EVENT_THREAD_UPDATED,
        {"thread_id": str(thread.id), "reason": reason},
    )


def active_users(user_ids) -> dict[int, "User"]:
    User = get_user_model()
    return {user.pk: user for user in User.objects.filter(pk__in=user_ids, is_active=True)}


# =============================================================================
# ThreadService
# =============================================================================


class ThreadService(BaseService):
    """
    Service for thread lifecycle operations.

    Methods:
        open_direct: Find or create the direct thread of a user pair
        create_group: Create a group with the creator as owner
        mute: Mute/unmute a thread for the caller
        expire_mutes: Clear mutes past their muted_until
        toggle_pinned: Per-user thread bookmark
        delete_group: Soft delete a group (owner only)
        list_for_user: Threads read model with unread counts
        thread_info: Members, recent attachments, caller's pins
    """

    @classmethod
    def accepts_contact_from(cls, settings: ChatSettings, caller: User) -> bool:
        """Whether the target's settings allow caller to open a new thread."""
        if not settings.accept_new_chats:
            return False
        if settings.who_can_contact == WhoCanContact.NOBODY:
            return False
        if settings.who_can_contact == WhoCanContact.PROVIDERS:
            return not caller.is_patient
        return True

    @classmethod
    def open_direct(cls, user: User, other_user_id: int) -> ServiceResult[Thread]:
        """
        Find or create the direct thread between user and other_user_id.

        Implementation:
            1. Reject self-chat and unknown/inactive targets
            2. Reject if a block exists in either direction
            3. Return the pair's existing thread, if any
            4. Apply the target's contact policy
            5. Create thread, pair row and both members in one transaction

        Concurrent calls for the same pair are settled by the unique
        constraint on DirectThreadPair: the loser returns the winner's thread.

        Error codes:
            VALIDATION_ERROR: Target is the caller
            NOT_FOUND: Target unknown or inactive
            BLOCKED: Block relation in either direction
            NOT_ACCEPTING: Target's settings disallow new chats from caller
        """
        if other_user_id == user.pk:
            return ServiceResult.failure(
                "Cannot open a direct thread with yourself",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        other = active_users([other_user_id]).get(other_user_id)
        if other is None:
            return ServiceResult.failure("User not found", error_code=ErrorCode.NOT_FOUND)

        if ChatBlock.exists_between(user.pk, other.pk):
            cls.get_logger().warning(
                f"Blocked direct thread attempt between {user.pk} and {other.pk}"
            )
            return ServiceResult.failure(
                "You cannot message this user",
                error_code=ErrorCode.BLOCKED,
            )

        user_lower_id, user_higher_id = DirectThreadPair.canonical(user.pk, other.pk)
        pairs = DirectThreadPair.objects.select_related("thread").filter(
            user_lower_id=user_lower_id,
            user_higher_id=user_higher_id,
        )
        existing = pairs.first()
        if existing:
            cls.get_logger().debug(
                f"Found existing direct thread {existing.thread_id} "
                f"between users {user_lower_id} and {user_higher_id}"
            )
            return ServiceResult.success(existing.thread)

        if not cls.accepts_contact_from(ChatSettings.for_user(other.pk), user):
            return ServiceResult.failure(
                "This user is not accepting new chats",
                error_code=ErrorCode.NOT_ACCEPTING,
            )

        try:
            with transaction.atomic():
                thread = Thread.objects.create(
                    thread_type=ThreadType.DIRECT,
                    created_by=user,
                )
                DirectThreadPair.objects.create(
                    thread=thread,
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                )
                for member_id in (user_lower_id, user_higher_id):
                    ThreadMember.objects.create(
                        thread=thread,
                        user_id=member_id,
                        role=MemberRole.MEMBER,
                    )
        except IntegrityError:
            winner = pairs.first()
            if winner is None:
                raise
            return ServiceResult.success(winner.thread)

        cls.get_logger().info(
            f"Created direct thread {thread.id} "
            f"between users {user_lower_id} and {user_higher_id}"
        )
        return ServiceResult.success(thread)

    @classmethod
    def create_group(
        cls,
        creator: User,
        title: str,
        member_ids: list[int] | None = None,
    ) -> ServiceResult[Thread]:
        """
        Create a group thread.

        The creator becomes owner; the deduplicated member_ids become
        members. At least 2 members in total are required.

        Error codes:
            VALIDATION_ERROR: Blank/long title, fewer than 2 members,
                unknown or inactive member ids
        """
        title = (title or "").strip()
        if not title:
            return ServiceResult.failure(
                "Group title is required",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"title": ["This field is required."]},
            )
        if len(title) > THREAD_CONFIG.MAX_TITLE_LENGTH:
            return ServiceResult.failure(
                f"Group title exceeds {THREAD_CONFIG.MAX_TITLE_LENGTH} characters",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        others = [uid for uid in dict.fromkeys(member_ids or []) if uid != creator.pk]
        if len(others) + 1 < THREAD_CONFIG.MIN_GROUP_MEMBERS:
            return ServiceResult.failure(
                f"A group needs at least {THREAD_CONFIG.MIN_GROUP_MEMBERS} members",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        users = active_users(others)
        missing = [uid for uid in others if uid not in users]
        if missing:
            return ServiceResult.failure(
                "Some members do not exist or are inactive",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"memberIds": [str(uid) for uid in missing]},
            )

        with cls.atomic():
            thread = Thread.objects.create(
                thread_type=ThreadType.GROUP,
                title=title,
                created_by=creator,
            )
            ThreadMember.objects.create(thread=thread, user=creator, role=MemberRole.OWNER)
            for uid in others:
                ThreadMember.objects.create(thread=thread, user=users[uid], role=MemberRole.MEMBER)

            MessageService.create_system_message(
                thread,
                SystemMessageEvent.GROUP_CREATED,
                {"title": title, "created_by_id": creator.pk},
            )

        cls.get_logger().info(
            f"User {creator.pk} created group {thread.id} with {len(others) + 1} members"
        )
        return ServiceResult.success(thread)

    @classmethod
    def mute(
        cls,
        user: User,
        thread_id,
        muted: bool = True,
        until: datetime | None = None,
        duration: str | None = None,
    ) -> ServiceResult[ThreadMember]:
        """
        Mute or unmute a thread for the caller.

        Muting never blocks delivery; it only tells notification surfaces to
        stay quiet. until=None with muted=True means until unmuted. A preset
        duration ("1h", "8h", "24h", "forever") takes precedence over until.
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        _thread, member = lookup.data

        now = timezone.now()
        if not muted:
            until = None
        elif duration is not None:
            if duration not in THREAD_CONFIG.MUTE_DURATIONS:
                return ServiceResult.failure(
                    f"Unknown mute duration: {duration}",
                    error_code=ErrorCode.VALIDATION_ERROR,
                )
            delta = THREAD_CONFIG.MUTE_DURATIONS[duration]
            until = now + delta if delta else None
        elif until is not None and until <= now:
            return ServiceResult.failure(
                "Mute expiry must be in the future",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        member.muted = muted
        member.muted_until = until
        member.save(update_fields=["muted", "muted_until", "updated_at"])
        return ServiceResult.success(member)

    @classmethod
    def expire_mutes(cls, now=None) -> int:
        """Clear mutes whose muted_until has passed. Returns rows updated."""
        now = now or timezone.now()
        updated = ThreadMember.objects.filter(
            muted=True,
            muted_until__isnull=False,
            muted_until__lte=now,
        ).update(muted=False, muted_until=None, updated_at=now)
        if updated:
            cls.get_logger().info(f"Expired {updated} thread mutes")
        return updated

    @classmethod
    def toggle_pinned(cls, user: User, thread_id) -> ServiceResult[bool]:
        """Toggle the caller's bookmark on a thread; True when now pinned."""
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, _member = lookup.data

        deleted, _ = PinnedThread.objects.filter(user=user, thread=thread).delete()
        if deleted:
            return ServiceResult.success(False)
        PinnedThread.objects.get_or_create(user=user, thread=thread)
        return ServiceResult.success(True)

    @classmethod
    def delete_group(cls, user: User, thread_id) -> ServiceResult[Thread]:
        """
        Soft delete a group thread.

        Error codes:
            VALIDATION_ERROR: Thread is a direct thread
            FORBIDDEN: Caller is not the owner
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        if not thread.is_group:
            return ServiceResult.failure(
                "Only group threads can be deleted",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        if not can_delete_group(member.role):
            return ServiceResult.failure(
                "Only the owner can delete this group",
                error_code=ErrorCode.FORBIDDEN,
            )

        with cls.atomic():
            thread.soft_delete()
            thread_updated(thread, "deleted")

        cls.get_logger().info(f"User {user.pk} deleted group {thread.id}")
        return ServiceResult.success(thread)

    @classmethod
    def list_for_user(cls, user: User) -> ServiceResult[list[ThreadSummary]]:
        """
        Every live thread the user actively belongs to.

        Each row carries the last visible message, the unread count, the
        other party's identity for direct threads, and the caller's own
        member state. Pinned threads come first, then threads by
        max(last message time, updated_at) descending.
        """
        memberships = list(
            MessageService.annotate_inbox(
                ThreadMember.objects.filter(
                    user=user,
                    left_at__isnull=True,
                    thread__is_deleted=False,
                ).select_related("thread"),
                user,
            )
        )
        thread_ids = [member.thread_id for member in memberships]
        last_messages = Message.objects.in_bulk(
            [m.last_message_id for m in memberships if m.last_message_id is not None]
        )

        pinned = set(
            PinnedThread.objects.filter(user=user, thread_id__in=thread_ids).values_list(
                "thread_id", flat=True
            )
        )
        member_counts = dict(
            ThreadMember.objects.filter(thread_id__in=thread_ids, left_at__isnull=True)
            .values("thread_id")
            .annotate(total=Count("id"))
            .values_list("thread_id", "total")
        )
        direct_ids = [m.thread_id for m in memberships if m.thread.is_direct]
        other_user_ids = dict(
            ThreadMember.objects.filter(thread_id__in=direct_ids)
            .exclude(user=user)
            .values_list("thread_id", "user_id")
        )
        identities = DirectoryService.resolve_many(other_user_ids.values())

        now = timezone.now()
        summaries = []
        for member in memberships:
            thread = member.thread
            last_message = last_messages.get(member.last_message_id)
            activity_at = thread.updated_at
            if last_message and last_message.created_at > activity_at:
                activity_at = last_message.created_at

            other_id = other_user_ids.get(thread.id)
            summaries.append(
                ThreadSummary(
                    thread=thread,
                    role=member.role,
                    muted=member.is_muted_at(now),
                    muted_until=member.muted_until,
                    is_pinned=thread.id in pinned,
                    unread_count=member.unread_count,
                    last_message=last_message,
                    other_user=identities[other_id].to_dict() if other_id else None,
                    member_count=member_counts.get(thread.id, 0),
                    activity_at=activity_at,
                )
            )

        summaries.sort(key=lambda s: s.activity_at, reverse=True)
        summaries.sort(key=lambda s: not s.is_pinned)
        return ServiceResult.success(summaries)

    @classmethod
    def thread_info(cls, user: User, thread_id) -> ServiceResult[ThreadInfo]:
        """
        Thread details for the info panel.

        Returns active members with resolved identities, up to 30 recent
        attachments of non-deleted messages, and up to 20 of the caller's
        pinned messages.
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, _member = lookup.data

        members = list(thread.active_members().order_by("joined_at", "id"))
        identities = DirectoryService.resolve_many(member.user_id for member in members)
        pinned_messages = [
            pin.message
            for pin in PinnedMessage.objects.filter(user=user, thread=thread)
            .select_related("message")
            .prefetch_related("message__attachments")
            .order_by("-created_at")[: THREAD_CONFIG.PINNED_MESSAGES_LIMIT]
        ]

        return ServiceResult.success(
            ThreadInfo(
                thread=thread,
                members=members,
                identities=identities,
                recent_attachments=AttachmentService.recent_for_thread(
                    thread, THREAD_CONFIG.RECENT_ATTACHMENTS_LIMIT
                ),
                pinned_messages=pinned_messages,
            )
        )


# =============================================================================
# MembershipService
# =============================================================================


class MembershipService(BaseService):
    """
    Service for group membership.

    Methods:
        leave: Leave a group (ownership passes on, small groups dissolve)
        add_members: Add or re-add users (owner/admin)
        remove_member: Remove another member (owner/admin)
        set_role: Promote/demote between admin and member
    """

    @classmethod
    def _require_group(cls, thread: Thread) -> ServiceResult | None:
        if thread.is_group:
            return None
        return ServiceResult.failure(
            "Direct threads have a fixed membership",
            error_code=ErrorCode.VALIDATION_ERROR,
        )

    @classmethod
    def leave(cls, user: User, thread_id) -> ServiceResult[ThreadMember]:
        """
        Leave a group thread.

        Sets left_at and keeps the row. When the owner leaves, ownership
        passes to the longest-standing admin, else the longest-standing
        member. A group left with fewer than 2 active members is dissolved.

        Direct threads cannot be left (their two-member invariant must
        hold); users mute them instead.
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        if thread.is_direct:
            return ServiceResult.failure(
                "Direct threads cannot be left; mute the thread instead",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        with cls.atomic():
            was_owner = member.is_owner
            member.left_at = timezone.now()
            if was_owner:
                member.role = MemberRole.MEMBER
            member.save(update_fields=["left_at", "role", "updated_at"])

            MessageService.create_system_message(
                thread,
                SystemMessageEvent.MEMBER_REMOVED,
                {"user_id": user.pk, "removed_by_id": None, "reason": "left"},
            )

            if not cls._dissolve_if_too_small(thread) and was_owner:
                cls._transfer_ownership_on_departure(thread, user)
            thread_updated(thread, "member_left")

        cls.get_logger().info(f"User {user.pk} left group {thread.id}")
        return ServiceResult.success(member)

    @classmethod
    def _dissolve_if_too_small(cls, thread: Thread) -> bool:
        """
        Internal: dissolve a group that fell below the minimum size.

        The thread is soft-deleted and the remaining members are released.
        Must be called within an existing transaction.
        """
        remaining = thread.active_members()
        if remaining.count() >= THREAD_CONFIG.MIN_GROUP_MEMBERS:
            return False

        MessageService.create_system_message(
            thread,
            SystemMessageEvent.GROUP_DISSOLVED,
            {"reason": "too_few_members"},
        )
        remaining.update(left_at=timezone.now())
        thread.soft_delete()

        cls.get_logger().info(f"Dissolved group {thread.id} (too few members)")
        return True

    @classmethod
    def _transfer_ownership_on_departure(cls, thread: Thread, departing: User) -> ThreadMember | None:
        """
        Internal: hand ownership to the longest-standing admin, else member.

        Must be called within an existing transaction.
        """
        candidates = thread.active_members().order_by("joined_at", "id")
        successor = (
            candidates.filter(role=MemberRole.ADMIN).first()
            or candidates.filter(role=MemberRole.MEMBER).first()
        )
        if successor is None:
            return None

        successor.role = MemberRole.OWNER
        successor.save(update_fields=["role", "updated_at"])
        MessageService.create_system_message(
            thread,
            SystemMessageEvent.OWNERSHIP_TRANSFERRED,
            {"from_user_id": departing.pk, "to_user_id": successor.user_id},
        )

        cls.get_logger().info(
            f"Transferred ownership of group {thread.id} to {successor.user_id} "
            f"(owner {departing.pk} left)"
        )
        return successor

    @classmethod
    def add_members(
        cls,
        user: User,
        thread_id,
        member_ids: list[int],
    ) -> ServiceResult[list[ThreadMember]]:
        """
        Add users to a group. Users who previously left are rejoined.

        Already active members are skipped.

        Error codes:
            FORBIDDEN: Caller is neither owner nor admin
            VALIDATION_ERROR: Direct thread, unknown or inactive user ids
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        not_group = cls._require_group(thread)
        if not_group is not None:
            return not_group
        if not can_manage_members(member.role):
            return ServiceResult.failure(
                "Only owners and admins can add members",
                error_code=ErrorCode.FORBIDDEN,
            )

        ids = [uid for uid in dict.fromkeys(member_ids) if uid != user.pk]
        users = active_users(ids)
        missing = [uid for uid in ids if uid not in users]
        if missing:
            return ServiceResult.failure(
                "Some members do not exist or are inactive",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"memberIds": [str(uid) for uid in missing]},
            )

        added = []
        with cls.atomic():
            now = timezone.now()
            for uid in ids:
                existing = ThreadMember.objects.filter(thread=thread, user_id=uid).first()
                if existing is not None and existing.is_active:
                    continue
                if existing is None:
                    existing = ThreadMember.objects.create(
                        thread=thread, user=users[uid], role=MemberRole.MEMBER
                    )
                else:
                    existing.left_at = None
                    existing.role = MemberRole.MEMBER
                    existing.joined_at = now
                    existing.muted = False
                    existing.muted_until = None
                    existing.save(
                        update_fields=[
                            "left_at",
                            "role",
                            "joined_at",
                            "muted",
                            "muted_until",
                            "updated_at",
                        ]
                    )
                MessageService.create_system_message(
                    thread,
                    SystemMessageEvent.MEMBER_ADDED,
                    {"user_id": uid, "added_by_id": user.pk},
                )
                added.append(existing)

            if added:
                thread_updated(thread, "members_added")

        cls.get_logger().info(f"User {user.pk} added {len(added)} members to group {thread.id}")
        return ServiceResult.success(added)

    @classmethod
    def _get_target(cls, thread: Thread, user: User, target_user_id: int) -> ServiceResult:
        if target_user_id == user.pk:
            return ServiceResult.failure(
                "Use leave to change your own membership",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        target = thread.get_active_member(target_user_id)
        if target is None:
            return ServiceResult.failure("Member not found", error_code=ErrorCode.NOT_FOUND)
        return ServiceResult.success(target)

    @classmethod
    def remove_member(
        cls,
        user: User,
        thread_id,
        target_user_id: int,
    ) -> ServiceResult[ThreadMember]:
        """
        Remove another member from a group.

        Owners remove anyone but themselves; admins remove plain members.
        Removal may not leave the group with fewer than 2 active members.
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        not_group = cls._require_group(thread)
        if not_group is not None:
            return not_group
        target_lookup = cls._get_target(thread, user, target_user_id)
        if not target_lookup:
            return target_lookup
        target = target_lookup.data

        if not can_remove_member(member.role, target.role):
            cls.get_logger().warning(
                f"User {user.pk} ({member.role}) may not remove {target.user_id} "
                f"({target.role}) from group {thread.id}"
            )
            return ServiceResult.failure(
                "You do not have permission to remove this member",
                error_code=ErrorCode.FORBIDDEN,
            )
        if thread.active_members().count() - 1 < THREAD_CONFIG.MIN_GROUP_MEMBERS:
            return ServiceResult.failure(
                f"A group needs at least {THREAD_CONFIG.MIN_GROUP_MEMBERS} members",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        with cls.atomic():
            target.left_at = timezone.now()
            target.save(update_fields=["left_at", "updated_at"])
            MessageService.create_system_message(
                thread,
                SystemMessageEvent.MEMBER_REMOVED,
                {"user_id": target.user_id, "removed_by_id": user.pk, "reason": "removed"},
            )
            thread_updated(thread, "member_removed")

        cls.get_logger().info(f"User {user.pk} removed {target.user_id} from group {thread.id}")
        return ServiceResult.success(target)

    @classmethod
    def set_role(
        cls,
        user: User,
        thread_id,
        target_user_id: int,
        role: str,
    ) -> ServiceResult[ThreadMember]:
        """
        Promote a member to admin or demote an admin to member.

        Only the owner changes an admin's role; admins may promote plain
        members. The owner role is never granted or taken here.
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        not_group = cls._require_group(thread)
        if not_group is not None:
            return not_group
        target_lookup = cls._get_target(thread, user, target_user_id)
        if not target_lookup:
            return target_lookup
        target = target_lookup.data

        if target.role == role:
            return ServiceResult.success(target)
        if not can_change_role(member.role, target.role, role):
            return ServiceResult.failure(
                "You do not have permission to change this member's role",
                error_code=ErrorCode.FORBIDDEN,
            )

        old_role = target.role
        with cls.atomic():
            target.role = role
            target.save(update_fields=["role", "updated_at"])
            MessageService.create_system_message(
                thread,
                SystemMessageEvent.ROLE_CHANGED,
                {
                    "user_id": target.user_id,
                    "old_role": old_role,
                    "new_role": role,
                    "changed_by_id": user.pk,
                },
            )
            thread_updated(thread, "role_changed")

        cls.get_logger().info(
            f"User {user.pk} changed role of {target.user_id} in group {thread.id} "
            f"from {old_role} to {role}"
        )
        return ServiceResult.success(target)
