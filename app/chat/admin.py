"""
Django admin configuration for messaging models.

Provides admin interfaces for:
- Thread management with inline members
- Message moderation
- Attachment upload status
- Abuse report triage
"""

from django.contrib import admin

from chat.models import (
    Attachment,
    ChatBlock,
    DirectThreadPair,
    Message,
    Thread,
    ThreadMember,
    UserReport,
)


class ThreadMemberInline(admin.TabularInline):
    """Inline display of members in thread admin."""

    model = ThreadMember
    extra = 0
    readonly_fields = ["joined_at", "left_at", "last_read_message", "last_read_at"]
    raw_id_fields = ["user"]


@admin.register(Thread)
class ThreadAdmin(admin.ModelAdmin):
    """Admin interface for Thread model."""

    list_display = [
        "id",
        "thread_type",
        "title",
        "is_deleted",
        "created_at",
        "last_message_at",
    ]
    list_filter = ["thread_type", "is_deleted", "created_at"]
    search_fields = ["title", "id"]
    readonly_fields = ["created_at", "updated_at", "deleted_at", "last_message_at"]
    raw_id_fields = ["created_by"]
    inlines = [ThreadMemberInline]
    ordering = ["-created_at"]


@admin.register(DirectThreadPair)
class DirectThreadPairAdmin(admin.ModelAdmin):
    list_display = ["thread", "user_lower", "user_higher"]
    raw_id_fields = ["thread", "user_lower", "user_higher"]


class AttachmentInline(admin.TabularInline):
    model = Attachment
    extra = 0
    readonly_fields = ["storage_path", "upload_status", "uploaded_at", "created_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "thread",
        "sender",
        "message_type",
        "content_preview",
        "is_deleted",
        "created_at",
    ]
    list_filter = ["message_type", "is_deleted", "created_at"]
    search_fields = ["content", "sender__email"]
    readonly_fields = ["created_at", "updated_at", "edited_at", "deleted_at"]
    raw_id_fields = ["thread", "sender", "reply_to"]
    inlines = [AttachmentInline]
    ordering = ["-created_at"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        return obj.preview()


@admin.register(Attachment)
class AttachmentAdmin(admin.ModelAdmin):
    list_display = ["id", "file_name", "file_type", "file_size", "upload_status", "created_at"]
    list_filter = ["upload_status", "created_at"]
    search_fields = ["file_name", "storage_path"]
    raw_id_fields = ["message"]


@admin.register(ChatBlock)
class ChatBlockAdmin(admin.ModelAdmin):
    list_display = ["blocker", "blocked", "created_at"]
    raw_id_fields = ["blocker", "blocked"]


@admin.register(UserReport)
class UserReportAdmin(admin.ModelAdmin):
    """Admin interface for abuse reports."""

    list_display = ["id", "reporter", "reported", "status", "created_at"]
    list_filter = ["status", "created_at"]
    search_fields = ["reporter__email", "reported__email", "reason"]
    raw_id_fields = ["reporter", "reported", "message"]
    ordering = ["-created_at"]
