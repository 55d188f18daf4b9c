"""
Messaging models.

Thread store:
    Thread: direct (1:1) or group conversation
    DirectThreadPair: one direct thread per unordered user pair
    ThreadMember: membership row with role, mute state and read pointer
    PinnedThread: per-user thread bookmark

Message log:
    Message: append-only, time-ordered entry with soft-delete tombstone
    MessageHide: per-user "delete for me" overlay
    PinnedMessage: per-user message bookmark
    Attachment: metadata row for bytes uploaded out-of-band

Presence and preferences:
    Presence: single current-value row per user
    ChatBlock: directional block relation
    ChatSettings: per-user chat preferences and contact policy
    QuickReply: canned responses
    UserReport: abuse reports

Typing signals are never persisted (see chat.events).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from chat.constants import MESSAGE_CONFIG
from core.model_mixins import SoftDeleteMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel


# =============================================================================
# Enums
# =============================================================================


class ThreadType(models.TextChoices):
    DIRECT = "direct", "Direct"
    GROUP = "group", "Group"


class MemberRole(models.TextChoices):
    """Group roles; direct thread members are always MEMBER."""

    OWNER = "owner", "Owner"
    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    FILE = "file", "File"
    SYSTEM = "system", "System"


class UploadStatus(models.TextChoices):
    """
    Attachment byte status.

    Rows start PENDING. The reconciliation task moves them to UPLOADED
    (bytes found in storage) or ORPHANED (never uploaded); a PUT through
    LocalStorageView marks them UPLOADED at once.
    """

    PENDING = "pending", "Pending"
    UPLOADED = "uploaded", "Uploaded"
    ORPHANED = "orphaned", "Orphaned"


class PresenceStatus(models.TextChoices):
    ONLINE = "online", "Online"
    AWAY = "away", "Away"
    BUSY = "busy", "Busy"
    OFFLINE = "offline", "Offline"


class WhoCanContact(models.TextChoices):
    ANYONE = "anyone", "Anyone"
    PROVIDERS = "providers", "Providers only"
    NOBODY = "nobody", "Nobody"


class ReportStatus(models.TextChoices):
    OPEN = "open", "Open"
    REVIEWED = "reviewed", "Reviewed"
    DISMISSED = "dismissed", "Dismissed"


class SystemMessageEvent:
    """
    System message event types.

    System messages store structured event data as JSON in the content field.
    Format: {"event": "<event_type>", "data": {...event-specific data...}}

    Events:
        GROUP_CREATED: data {"title", "created_by_id"}
        MEMBER_ADDED: data {"user_id", "added_by_id"}
        MEMBER_REMOVED: data {"user_id", "removed_by_id", "reason": "left"|"removed"}
        ROLE_CHANGED: data {"user_id", "old_role", "new_role", "changed_by_id"}
        OWNERSHIP_TRANSFERRED: data {"from_user_id", "to_user_id"}
        GROUP_DISSOLVED: data {"reason"}
    """

    GROUP_CREATED = "group_created"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    ROLE_CHANGED = "role_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    GROUP_DISSOLVED = "group_dissolved"


# =============================================================================
# Thread store
# =============================================================================


class Thread(UUIDPrimaryKeyMixin, SoftDeleteMixin, BaseModel):
    """
    A conversation between two (direct) or more (group) users.

    Invariants:
        - Direct threads have exactly 2 active members and no title
        - Group threads have at least 2 active members; a group that drops
          below that is dissolved (soft-deleted)

    Fields:
        thread_type: direct or group
        title: Group title (null for direct threads)
        created_by: User who created the thread
        last_message_at: created_at of the newest message, used to keep
            message timestamps strictly increasing within the thread
        updated_at: Bumped on every new message
    """

    thread_type = models.CharField(
        max_length=10,
        choices=ThreadType.choices,
        db_index=True,
        help_text="Type of thread: direct (1:1) or group",
    )
    title = models.CharField(
        max_length=200,
        null=True,
        blank=True,
        help_text="Group title (null for direct threads)",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_threads",
        help_text="User who created this thread",
    )
    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the newest message in this thread",
    )

    class Meta:
        db_table = "chat_thread"
        ordering = ["-updated_at"]
        indexes = [
            models.Index(
                fields=["thread_type", "is_deleted"],
                name="chat_thread_type_deleted_idx",
            ),
        ]

    def __str__(self) -> str:
        if self.thread_type == ThreadType.DIRECT:
            return f"Direct({self.pk})"
        return f"Group: {self.title}"

    @property
    def is_direct(self) -> bool:
        return self.thread_type == ThreadType.DIRECT

    @property
    def is_group(self) -> bool:
        return self.thread_type == ThreadType.GROUP

    @property
    def activity_at(self):
        """Sort key for thread lists: newest of last message and update time."""
        if self.last_message_at and self.last_message_at > self.updated_at:
            return self.last_message_at
        return self.updated_at

    def active_members(self):
        return self.members.filter(left_at__isnull=True)

    def get_active_member(self, user_id) -> "ThreadMember | None":
        """Return the caller's active membership, or None."""
        return self.active_members().filter(user_id=user_id).first()


class DirectThreadPair(BaseModel):
    """
    Unique marker for the direct thread between two users.

    Users are stored in canonical order (lower id first) so that the unique
    constraint covers the unordered pair and concurrent openDirect calls
    cannot both create a thread.
    """

    thread = models.OneToOneField(
        Thread,
        on_delete=models.CASCADE,
        related_name="direct_pair",
        help_text="The direct thread for this pair",
    )
    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with the lower id",
    )
    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with the higher id",
    )

    class Meta:
        db_table = "chat_direct_thread_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_thread_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="direct_pair_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)


class ThreadMember(BaseModel):
    """
    Membership of a user in a thread.

    Leaving sets left_at; the row is kept so history and the read pointer
    stay consistent if the user is added back.

    Fields:
        role: owner / admin / member (only meaningful for groups)
        joined_at: When the user (re)joined
        left_at: When the user left (null = active)
        muted / muted_until: Notification suppression; delivery is unaffected
        last_read_message: Read pointer; only ever advances
        last_read_at: When the read pointer last advanced
    """

    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name="members",
        help_text="Thread this membership belongs to",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="thread_memberships",
        help_text="Member user",
    )
    role = models.CharField(
        max_length=10,
        choices=MemberRole.choices,
        default=MemberRole.MEMBER,
        help_text="Role in the thread (owner/admin/member)",
    )
    joined_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user joined the thread",
    )
    left_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the user left (null = active member)",
    )
    muted = models.BooleanField(
        default=False,
        help_text="Whether notifications for this thread are muted",
    )
    muted_until = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Mute expiry (null = muted until unmuted)",
    )
    last_read_message = models.ForeignKey(
        "chat.Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Newest message this member has read",
    )
    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the read pointer last advanced",
    )

    class Meta:
        db_table = "chat_thread_member"
        ordering = ["joined_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["thread", "user"],
                name="unique_thread_member",
            ),
        ]
        indexes = [
            models.Index(
                fields=["user", "left_at"],
                name="chat_member_user_active_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} in {self.thread_id} ({self.role})"

    @property
    def is_active(self) -> bool:
        return self.left_at is None

    @property
    def is_owner(self) -> bool:
        return self.role == MemberRole.OWNER

    def is_muted_at(self, when=None) -> bool:
        """Whether the mute is in effect at the given time (default now)."""
        if not self.muted:
            return False
        if self.muted_until is None:
            return True
        return self.muted_until > (when or timezone.now())


class PinnedThread(BaseModel):
    """Per-user thread bookmark; pinned threads sort first in thread lists."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="pinned_threads",
        help_text="User who pinned the thread",
    )
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name="pins",
        help_text="Pinned thread",
    )

    class Meta:
        db_table = "chat_pinned_thread"
        constraints = [
            models.UniqueConstraint(
                fields=["user", "thread"],
                name="unique_pinned_thread",
            ),
        ]


# =============================================================================
# Message log
# =============================================================================


class Message(UUIDPrimaryKeyMixin, SoftDeleteMixin, BaseModel):
    """
    A message in a thread.

    Ordering:
        Total order within a thread is (created_at, id). created_at is
        assigned by MessageService.send and is strictly increasing per
        thread; id only breaks ties for rows written outside that path.

    Deletion:
        soft_delete() nulls content and keeps the row so the message keeps
        its position for every viewer. Per-user hiding uses MessageHide.

    Invariant:
        A non-system message has content and/or at least one attachment.
    """

    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Thread this message belongs to",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent the message (null for system messages)",
    )
    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        help_text="Type of message (text/image/file/system)",
    )
    content = models.TextField(
        null=True,
        blank=True,
        help_text="Message text (null for attachment-only or deleted messages)",
    )
    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Earlier message in the same thread this one replies to",
    )
    is_edited = models.BooleanField(
        default=False,
        help_text="Whether the content was edited after sending",
    )
    edited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the message was last edited",
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        editable=False,
        help_text="Server-assigned send time; defines order within the thread",
    )

    soft_delete_extra_fields = ("content",)

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["thread", "created_at"],
                name="chat_msg_thread_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Message({self.pk}) in {self.thread_id}"

    @property
    def is_system(self) -> bool:
        return self.message_type == MessageType.SYSTEM

    def on_soft_delete(self) -> None:
        self.content = None

    def preview(self) -> str:
        """Text shown in thread lists: content, or a label for its type."""
        labels = MESSAGE_CONFIG.PREVIEW_LABELS
        if self.is_deleted:
            return labels["deleted"]
        if self.is_system:
            return labels["system"]
        if self.content:
            return self.content
        return labels.get(self.message_type, "")


class MessageHide(BaseModel):
    """
    Per-user "delete for me" overlay.

    Presence of a row hides the message from that user only; the message
    log and other members are unaffected.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="hidden_messages",
        help_text="User who hid the message",
    )
    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="hides",
        help_text="Hidden message",
    )

    class Meta:
        db_table = "chat_message_hide"
        constraints = [
            models.UniqueConstraint(
                fields=["user", "message"],
                name="unique_message_hide",
            ),
        ]


class PinnedMessage(BaseModel):
    """Per-user message bookmark, independent of the message's global state."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="pinned_messages",
        help_text="User who pinned the message",
    )
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name="pinned_messages",
        help_text="Thread of the pinned message",
    )
    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="pins",
        help_text="Pinned message",
    )

    class Meta:
        db_table = "chat_pinned_message"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "message"],
                name="unique_pinned_message",
            ),
        ]


class Attachment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Metadata for a file attached to a message.

    The row is written before any bytes exist; the client uploads directly
    to object storage with a signed grant keyed to storage_path.

    Fields:
        storage_path: Opaque, unique locator
            "{thread}/{message}/{random}_{name}"
        upload_status: pending until bytes are found in storage
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="attachments",
        help_text="Message this attachment belongs to",
    )
    file_name = models.CharField(
        max_length=255,
        help_text="Original file name",
    )
    file_type = models.CharField(
        max_length=255,
        blank=True,
        help_text="MIME type declared by the sender",
    )
    file_size = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Declared size in bytes",
    )
    storage_path = models.CharField(
        max_length=1024,
        unique=True,
        help_text="Object storage locator",
    )
    upload_status = models.CharField(
        max_length=10,
        choices=UploadStatus.choices,
        default=UploadStatus.PENDING,
        help_text="Whether the bytes were found in storage",
    )
    uploaded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the bytes were confirmed in storage",
    )

    class Meta:
        db_table = "chat_attachment"
        ordering = ["created_at"]
        indexes = [
            models.Index(
                fields=["upload_status", "created_at"],
                name="chat_attach_status_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.file_name} ({self.storage_path})"

    @property
    def is_image(self) -> bool:
        return (self.file_type or "").startswith("image/")


# =============================================================================
# Presence and preferences
# =============================================================================


class Presence(models.Model):
    """
    Current presence of a user.

    A single row per user, overwritten on every update. No history is kept;
    a missing row means "offline / unknown".
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="chat_presence",
        help_text="User this presence belongs to",
    )
    status = models.CharField(
        max_length=10,
        choices=PresenceStatus.choices,
        default=PresenceStatus.ONLINE,
        help_text="Current status",
    )
    status_message = models.CharField(
        max_length=140,
        blank=True,
        help_text="Free-text status message",
    )
    last_seen_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="Last time the user reported presence",
    )

    class Meta:
        db_table = "chat_presence"

    def __str__(self) -> str:
        return f"{self.user_id}: {self.status}"


class ChatBlock(BaseModel):
    """Directional block: blocker does not want contact from blocked."""

    blocker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_blocks_made",
        help_text="User who created the block",
    )
    blocked = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_blocks_received",
        help_text="User who is blocked",
    )

    class Meta:
        db_table = "chat_block"
        constraints = [
            models.UniqueConstraint(
                fields=["blocker", "blocked"],
                name="unique_chat_block",
            ),
            models.CheckConstraint(
                condition=~Q(blocker=F("blocked")),
                name="chat_block_not_self",
            ),
        ]

    @classmethod
    def exists_between(cls, user_a_id: int, user_b_id: int) -> bool:
        """Whether a block exists in either direction."""
        return cls.objects.filter(
            Q(blocker_id=user_a_id, blocked_id=user_b_id)
            | Q(blocker_id=user_b_id, blocked_id=user_a_id)
        ).exists()


class ChatSettings(BaseModel):
    """
    Per-user chat preferences.

    Users without a row get the field defaults (see for_user()).
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="chat_settings",
        help_text="User these settings belong to",
    )
    accept_new_chats = models.BooleanField(
        default=True,
        help_text="Whether other users may open new direct threads",
    )
    who_can_contact = models.CharField(
        max_length=10,
        choices=WhoCanContact.choices,
        default=WhoCanContact.ANYONE,
        help_text="Which users may open new direct threads",
    )
    notifications_enabled = models.BooleanField(default=True)
    sound_enabled = models.BooleanField(default=True)
    show_typing_indicators = models.BooleanField(
        default=True,
        help_text="Broadcast this user's typing state",
    )
    show_read_receipts = models.BooleanField(
        default=True,
        help_text="Broadcast this user's read pointer",
    )
    show_online_status = models.BooleanField(
        default=True,
        help_text="Expose this user's presence to others",
    )
    enter_to_send = models.BooleanField(default=True)

    EDITABLE_FIELDS = (
        "accept_new_chats",
        "who_can_contact",
        "notifications_enabled",
        "sound_enabled",
        "show_typing_indicators",
        "show_read_receipts",
        "show_online_status",
        "enter_to_send",
    )

    class Meta:
        db_table = "chat_settings"
        verbose_name_plural = "chat settings"

    @classmethod
    def for_user(cls, user_id: int) -> "ChatSettings":
        """Stored settings, or an unsaved instance holding the defaults."""
        return cls.objects.filter(user_id=user_id).first() or cls(user_id=user_id)


class QuickReply(UUIDPrimaryKeyMixin, BaseModel):
    """Canned response owned by one user."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="quick_replies",
        help_text="Owner of the quick reply",
    )
    title = models.CharField(max_length=100, help_text="Short label")
    content = models.TextField(help_text="Text inserted into the composer")
    category = models.CharField(max_length=50, blank=True)
    shortcut = models.CharField(
        max_length=32,
        blank=True,
        help_text="Composer shortcut such as /thanks",
    )

    class Meta:
        db_table = "chat_quick_reply"
        ordering = ["title"]


class UserReport(BaseModel):
    """Abuse report filed by one user against another."""

    reporter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_reports_made",
        help_text="User filing the report",
    )
    reported = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_reports_received",
        help_text="User being reported",
    )
    message = models.ForeignKey(
        Message,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reports",
        help_text="Offending message, if any",
    )
    reason = models.TextField(blank=True)
    status = models.CharField(
        max_length=10,
        choices=ReportStatus.choices,
        default=ReportStatus.OPEN,
    )

    class Meta:
        db_table = "chat_user_report"
        ordering = ["-created_at"]
