"""
Serializers for the messaging API.

This module provides two families of serializers:

Row serializers (responses and real-time payloads):
    AttachmentSerializer: Attachment metadata
    MessageSerializer: Message with sender identity and attachments
    ThreadSerializer: Bare thread row
    ThreadSummarySerializer: listForUser read model row
    ThreadMemberSerializer: Member with resolved identity
    PresenceSerializer: Current presence
    ChatSettingsSerializer, QuickReplySerializer: Preferences

Request serializers (one per GET type / POST action):
    Accept the camelCase keys clients send and map them onto snake_case
    service arguments through `source=`, so validated_data can be passed
    straight to a service method.

Design Decisions:
    - Read and write serializers are separate for clarity
    - Row serializers emit only JSON-native values (str ids, ISO times) so
      the same data can travel through the channel layer
    - Sender identities come from the serializer context when the caller
      resolved them in bulk, otherwise from DirectoryService
"""

from __future__ import annotations

import json

from rest_framework import serializers

from accounts.services import DirectoryService
from chat.constants import (
    ATTACHMENT_CONFIG,
    MESSAGE_CONFIG,
    PRESENCE_CONFIG,
    THREAD_CONFIG,
)
from chat.models import (
    Attachment,
    ChatSettings,
    MemberRole,
    Message,
    PresenceStatus,
    QuickReply,
    Thread,
    ThreadMember,
    WhoCanContact,
)


def identity_for(user_id, context: dict) -> dict | None:
    """Identity dict for user_id, preferring identities resolved in bulk."""
    if user_id is None:
        return None
    identities = context.get("identities") or {}
    entry = identities.get(user_id) or DirectoryService.resolve(user_id)
    return entry.to_dict()


# =============================================================================
# Row Serializers
# =============================================================================


class AttachmentSerializer(serializers.ModelSerializer):
    """Attachment metadata. storage_path is a locator, not a public URL."""

    message_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Attachment
        fields = [
            "id",
            "message_id",
            "file_name",
            "file_type",
            "file_size",
            "storage_path",
            "upload_status",
            "created_at",
        ]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Message row as seen by every member.

    Deleted messages keep their position and id; content is already null
    on the row. System messages expose their parsed event.
    """

    thread_id = serializers.UUIDField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True, allow_null=True)
    reply_to_id = serializers.UUIDField(read_only=True, allow_null=True)
    sender = serializers.SerializerMethodField(
        help_text="Display identity of the sender (null for system messages)"
    )
    attachments = AttachmentSerializer(many=True, read_only=True)
    system_event = serializers.SerializerMethodField(
        help_text="Parsed {event, data} for system messages"
    )

    class Meta:
        model = Message
        fields = [
            "id",
            "thread_id",
            "sender_id",
            "sender",
            "message_type",
            "content",
            "reply_to_id",
            "is_edited",
            "edited_at",
            "is_deleted",
            "deleted_at",
            "created_at",
            "updated_at",
            "attachments",
            "system_event",
        ]
        read_only_fields = fields

    def get_sender(self, obj: Message) -> dict | None:
        return identity_for(obj.sender_id, self.context)

    def get_system_event(self, obj: Message) -> dict | None:
        if not obj.is_system or not obj.content:
            return None
        try:
            return json.loads(obj.content)
        except (json.JSONDecodeError, TypeError):
            return None


class MessagePreviewSerializer(serializers.ModelSerializer):
    """Minimal message used as the last-message preview in thread lists."""

    sender_id = serializers.IntegerField(read_only=True, allow_null=True)
    preview = serializers.CharField(read_only=True)

    class Meta:
        model = Message
        fields = ["id", "sender_id", "message_type", "preview", "is_deleted", "created_at"]
        read_only_fields = fields


class ThreadSerializer(serializers.ModelSerializer):
    created_by_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = Thread
        fields = [
            "id",
            "thread_type",
            "title",
            "created_by_id",
            "created_at",
            "updated_at",
            "last_message_at",
        ]
        read_only_fields = fields


class ThreadSummarySerializer(serializers.Serializer):
    """Row of the threads-for-a-user read model (see ThreadSummary)."""

    id = serializers.UUIDField(source="thread.id")
    thread_type = serializers.CharField(source="thread.thread_type")
    title = serializers.CharField(source="thread.title", allow_null=True)
    role = serializers.CharField()
    muted = serializers.BooleanField()
    muted_until = serializers.DateTimeField(allow_null=True)
    is_pinned = serializers.BooleanField()
    unread_count = serializers.IntegerField()
    last_message = MessagePreviewSerializer(allow_null=True)
    other_user = serializers.DictField(allow_null=True)
    member_count = serializers.IntegerField()
    activity_at = serializers.DateTimeField()


class ThreadMemberSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(read_only=True)
    user = serializers.SerializerMethodField()
    last_read_message_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = ThreadMember
        fields = [
            "user_id",
            "user",
            "role",
            "joined_at",
            "muted",
            "muted_until",
            "last_read_message_id",
            "last_read_at",
        ]
        read_only_fields = fields

    def get_user(self, obj: ThreadMember) -> dict | None:
        return identity_for(obj.user_id, self.context)


class PresenceSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    status = serializers.CharField()
    status_message = serializers.CharField(allow_blank=True)
    last_seen_at = serializers.DateTimeField(allow_null=True)


class ChatSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChatSettings
        fields = list(ChatSettings.EDITABLE_FIELDS)
        read_only_fields = fields


class QuickReplySerializer(serializers.ModelSerializer):
    class Meta:
        model = QuickReply
        fields = ["id", "title", "content", "category", "shortcut", "created_at", "updated_at"]
        read_only_fields = fields


# =============================================================================
# Request Serializers: GET
# =============================================================================


class ThreadQuerySerializer(serializers.Serializer):
    threadId = serializers.UUIDField(source="thread_id")


class MessagesQuerySerializer(ThreadQuerySerializer):
    cursor = serializers.CharField(required=False, allow_blank=True, default=None)
    limit = serializers.IntegerField(required=False, min_value=1, default=None)


class SearchQuerySerializer(ThreadQuerySerializer):
    q = serializers.CharField(required=False, allow_blank=True, default="", source="query")


class PresenceQuerySerializer(serializers.Serializer):
    userId = serializers.IntegerField(source="user_id")


class DirectoryQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, default="", source="query")
    includePatients = serializers.BooleanField(
        required=False, default=False, source="include_patients"
    )


# =============================================================================
# Request Serializers: POST
# =============================================================================


class OpenDirectSerializer(serializers.Serializer):
    otherUserId = serializers.IntegerField(source="other_user_id")


class CreateGroupSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=THREAD_CONFIG.MAX_TITLE_LENGTH)
    memberIds = serializers.ListField(
        child=serializers.IntegerField(), source="member_ids", allow_empty=True
    )


class MuteSerializer(ThreadQuerySerializer):
    muted = serializers.BooleanField(required=False, default=True)
    mutedUntil = serializers.DateTimeField(
        source="until", required=False, allow_null=True, default=None
    )
    duration = serializers.ChoiceField(
        choices=list(THREAD_CONFIG.MUTE_DURATIONS), required=False, default=None
    )


class AddMembersSerializer(ThreadQuerySerializer):
    memberIds = serializers.ListField(
        child=serializers.IntegerField(), source="member_ids", min_length=1
    )


class MemberActionSerializer(ThreadQuerySerializer):
    userId = serializers.IntegerField(source="target_user_id")


class SetRoleSerializer(MemberActionSerializer):
    role = serializers.ChoiceField(choices=[MemberRole.ADMIN, MemberRole.MEMBER])


class AttachmentInputSerializer(serializers.Serializer):
    fileName = serializers.CharField(
        source="file_name", max_length=ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH
    )
    fileType = serializers.CharField(
        source="file_type", required=False, allow_blank=True, default=""
    )
    fileSize = serializers.IntegerField(
        source="file_size", required=False, allow_null=True, min_value=0, default=None
    )


class SendMessageSerializer(ThreadQuerySerializer):
    content = serializers.CharField(
        required=False,
        allow_blank=True,
        allow_null=True,
        default=None,
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
    )
    attachments = AttachmentInputSerializer(many=True, required=False, default=list)
    replyToMessageId = serializers.UUIDField(
        source="reply_to_id", required=False, allow_null=True, default=None
    )


class MessageActionSerializer(serializers.Serializer):
    messageId = serializers.UUIDField(source="message_id")


class EditMessageSerializer(MessageActionSerializer):
    content = serializers.CharField(max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH)


class MarkReadSerializer(ThreadQuerySerializer):
    messageId = serializers.UUIDField(source="message_id")


class RequestUploadSerializer(MessageActionSerializer, AttachmentInputSerializer):
    pass


class DownloadUrlSerializer(serializers.Serializer):
    storagePath = serializers.CharField(source="storage_path", max_length=1024)


class RefreshUploadSerializer(serializers.Serializer):
    attachmentId = serializers.UUIDField(source="attachment_id")


class UserActionSerializer(serializers.Serializer):
    userId = serializers.IntegerField(source="target_user_id")


class ReportSerializer(UserActionSerializer):
    messageId = serializers.UUIDField(
        source="message_id", required=False, allow_null=True, default=None
    )
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PresenceUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=PresenceStatus.choices, required=False, default=PresenceStatus.ONLINE
    )
    statusMessage = serializers.CharField(
        source="status_message", required=False, allow_blank=True, default="",
        max_length=PRESENCE_CONFIG.MAX_STATUS_MESSAGE_LENGTH,
    )


class SettingsUpdateSerializer(serializers.Serializer):
    """Partial update; only keys present in the request are changed."""

    acceptNewChats = serializers.BooleanField(source="accept_new_chats", required=False)
    whoCanContact = serializers.ChoiceField(
        source="who_can_contact",
        choices=WhoCanContact.choices,
        required=False,
    )
    notificationsEnabled = serializers.BooleanField(
        source="notifications_enabled", required=False
    )
    soundEnabled = serializers.BooleanField(source="sound_enabled", required=False)
    showTypingIndicators = serializers.BooleanField(
        source="show_typing_indicators", required=False
    )
    showReadReceipts = serializers.BooleanField(source="show_read_receipts", required=False)
    showOnlineStatus = serializers.BooleanField(source="show_online_status", required=False)
    enterToSend = serializers.BooleanField(source="enter_to_send", required=False)


class QuickReplyCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=100)
    content = serializers.CharField()
    category = serializers.CharField(required=False, allow_blank=True, default="", max_length=50)
    shortcut = serializers.CharField(required=False, allow_blank=True, default="", max_length=32)


class QuickReplyUpdateSerializer(serializers.Serializer):
    quickReplyId = serializers.UUIDField(source="quick_reply_id")
    title = serializers.CharField(required=False, max_length=100)
    content = serializers.CharField(required=False)
    category = serializers.CharField(required=False, allow_blank=True, max_length=50)
    shortcut = serializers.CharField(required=False, allow_blank=True, max_length=32)


class QuickReplyDeleteSerializer(serializers.Serializer):
    quickReplyId = serializers.UUIDField(source="quick_reply_id")
