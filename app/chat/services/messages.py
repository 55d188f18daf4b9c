"""
Message Log service.

An append-only, time-ordered sequence of messages per thread, with two
independent overlays:
    - global soft delete (content nulled, row keeps its position)
    - per-user hide ("delete for me", MessageHide rows)

Ordering:
    Total order within a thread is (created_at, id). send() assigns
    created_at = max(now, thread.last_message_at + 1µs) while holding a
    row lock on the thread, so timestamps are strictly increasing per
    thread. Pages are keyed on the same pair, so equal timestamps never
    cause skipped or repeated rows.

Usage:
    from chat.services import MessageService

    result = MessageService.send(
        user=user,
        thread_id=thread.id,
        content="Results are in",
        attachments=[{"file_name": "cbc.pdf", "file_type": "application/pdf",
                      "file_size": 48213}],
    )
    if result.success:
        result.data.message
        result.data.uploads  # one signed upload grant per attachment
"""

from __future__ import annotations

import base64
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.db.models import Case, Count, IntegerField, OuterRef, Q, Subquery, When
from django.db.models.functions import Coalesce
from django.utils import timezone

from chat.constants import MESSAGE_CONFIG, REALTIME_CONFIG
from chat.events import broadcast_on_commit
from chat.models import (
    ChatSettings,
    Message,
    MessageHide,
    MessageType,
    PinnedMessage,
    Thread,
    ThreadMember,
)
from chat.serializers import MessageSerializer
from chat.services.access import (
    get_member_message,
    get_member_thread,
    message_not_found,
    parse_uuid,
)
from chat.services.attachments import AttachmentService
from core.exceptions import ErrorCode, UpstreamFailureError
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


def count_subquery(queryset) -> Coalesce:
    """COUNT(*) of a queryset correlated on thread_id, 0 when empty."""
    counted = (
        queryset.order_by()
        .values("thread_id")
        .annotate(total=Count("id"))
        .values("total")
    )
    return Coalesce(Subquery(counted, output_field=IntegerField()), 0)


# =============================================================================
# Cursor and result types
# =============================================================================


@dataclass(frozen=True)
class MessageCursor:
    """
    Opaque keyset cursor for backward pagination.

    Encodes the (created_at, id) of the oldest message of the previous page
    as base64 JSON.
    """

    created_at: datetime
    id: uuid.UUID

    @classmethod
    def for_message(cls, message: Message) -> "MessageCursor":
        return cls(created_at=message.created_at, id=message.id)

    def encode(self) -> str:
        """Encode cursor as base64 JSON string."""
        data = {"t": self.created_at.isoformat(), "id": str(self.id)}
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode()

    @classmethod
    def decode(cls, encoded: str) -> "MessageCursor":
        """
        Decode cursor from base64 JSON string.

        Raises:
            ValueError: If the cursor is malformed
        """
        try:
            data = json.loads(base64.urlsafe_b64decode(encoded.encode()).decode())
            return cls(
                created_at=datetime.fromisoformat(data["t"]),
                id=uuid.UUID(data["id"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError("Invalid cursor") from e


@dataclass
class SendResult:
    """A sent message plus one upload grant per attachment."""

    message: Message
    uploads: list[dict] = field(default_factory=list)


@dataclass
class MessagePage:
    """
    One page of a thread, oldest first.

    next_cursor is set when the page is full; pass it back to fetch the
    page before this one.
    """

    messages: list[Message]
    next_cursor: str | None = None


def is_after(message: Message, other: Message | None) -> bool:
    """Whether message sorts strictly after other in (created_at, id) order."""
    if other is None:
        return True
    return (message.created_at, message.id) > (other.created_at, other.id)


def message_payload(message: Message) -> dict:
    """Row dict used in real-time events."""
    return dict(MessageSerializer(message).data)


# =============================================================================
# MessageService
# =============================================================================


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        send: Append a message (with optional attachments and reply)
        edit: Replace content (sender only, last write wins)
        delete: Global soft delete (sender only)
        delete_for_me: Hide a message for the caller only (idempotent)
        fetch_page: Backward keyset pagination
        mark_read: Advance the caller's read pointer (monotonic)
        search: Case-insensitive substring search within a thread
        toggle_pinned: Per-user message bookmark
        create_system_message: Record a membership event in the log
    """

    # -------------------------------------------------------------------------
    # Appending
    # -------------------------------------------------------------------------

    @classmethod
    def next_timestamp(cls, last_message_at: datetime | None) -> datetime:
        now = timezone.now()
        if last_message_at is not None and now <= last_message_at:
            return last_message_at + timedelta(microseconds=1)
        return now

    @classmethod
    def _append(
        cls,
        thread: Thread,
        *,
        sender: User | None,
        message_type: str,
        content: str | None,
        reply_to: Message | None = None,
    ) -> Message:
        """
        Internal: insert a message with the next timestamp for its thread.

        Locks the thread row and bumps updated_at/last_message_at. Must be
        called within an existing transaction.
        """
        locked = Thread.objects.select_for_update().only("id", "last_message_at").get(
            pk=thread.pk
        )
        created_at = cls.next_timestamp(locked.last_message_at)

        message = Message.objects.create(
            thread=thread,
            sender=sender,
            message_type=message_type,
            content=content,
            reply_to=reply_to,
            created_at=created_at,
        )

        Thread.objects.filter(pk=thread.pk).update(
            last_message_at=created_at,
            updated_at=created_at,
        )
        thread.last_message_at = created_at
        thread.updated_at = created_at
        return message

    @classmethod
    def create_system_message(cls, thread: Thread, event: str, data: dict) -> Message:
        """
        Record a system event (group created, member added, ...).

        System messages have no sender and store {"event", "data"} as JSON
        content. Must be called within an existing transaction.
        """
        message = cls._append(
            thread,
            sender=None,
            message_type=MessageType.SYSTEM,
            content=json.dumps({"event": event, "data": data}),
        )
        broadcast_on_commit(
            thread.id,
            REALTIME_CONFIG.EVENT_MESSAGE_CREATED,
            {"message": message_payload(message)},
        )
        return message

    @classmethod
    def resolve_type(cls, attachments: list[dict]) -> str:
        """image if the first attachment is an image, file if any, else text."""
        if not attachments:
            return MessageType.TEXT
        if (attachments[0].get("file_type") or "").startswith("image/"):
            return MessageType.IMAGE
        return MessageType.FILE

    @classmethod
    def send(
        cls,
        user: User,
        thread_id,
        content: str | None = None,
        attachments: list[dict] | None = None,
        reply_to_id=None,
    ) -> ServiceResult[SendResult]:
        """
        Send a message to a thread.

        Implementation:
            1. Validate payload (content and/or attachments, sizes)
            2. Lock the thread, assign the next timestamp, insert the message
            3. Insert attachment rows (pending bytes)
            4. Issue one signed upload grant per attachment

        A signing failure in step 4 returns UPSTREAM_FAILURE and leaves the
        message and attachment rows in place. The failure carries the
        committed row and attachment ids in details so the client can
        request fresh grants with refresh_upload instead of resending.

        Args:
            user: Sender (must be an active member)
            thread_id: Target thread
            content: Message text (optional when attachments are given)
            attachments: List of {file_name, file_type, file_size}
            reply_to_id: Optional earlier message in the same thread

        Returns:
            ServiceResult with SendResult

        Error codes:
            VALIDATION_ERROR: Empty payload, bad reply target, too many files
            PAYLOAD_TOO_LARGE: An attachment exceeds 15 MB
            NOT_FOUND: Thread missing or caller is not an active member
            UPSTREAM_FAILURE: Upload grants could not be issued
        """
        content = (content or "").strip() or None
        attachments = list(attachments or [])

        if content is None and not attachments:
            return ServiceResult.failure(
                "Message must have content or at least one attachment",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        if content and len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content exceeds {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        validation = AttachmentService.validate_specs(attachments)
        if validation is not None:
            return validation

        with cls.atomic():
            lookup = get_member_thread(thread_id, user)
            if not lookup:
                return lookup
            thread, _member = lookup.data

            reply_to = None
            if reply_to_id is not None:
                reply_pk = parse_uuid(reply_to_id)
                reply_to = thread.messages.filter(pk=reply_pk).first() if reply_pk else None
                if reply_to is None:
                    return ServiceResult.failure(
                        "Reply target must be an earlier message in this thread",
                        error_code=ErrorCode.VALIDATION_ERROR,
                    )

            message = cls._append(
                thread,
                sender=user,
                message_type=cls.resolve_type(attachments),
                content=content,
                reply_to=reply_to,
            )
            rows = AttachmentService.create_rows(message, attachments)

            broadcast_on_commit(
                thread.id,
                REALTIME_CONFIG.EVENT_MESSAGE_CREATED,
                {"message": message_payload(message)},
            )

        cls.get_logger().info(
            f"User {user.pk} sent message {message.id} to thread {thread.id} "
            f"({len(rows)} attachments)"
        )

        try:
            uploads = AttachmentService.issue_upload_grants(rows)
        except UpstreamFailureError as e:
            result = cls.handle_exception(e, f"Issuing upload grants for message {message.id}")
            result.details = {
                "message": message_payload(message),
                "attachment_ids": [str(row.id) for row in rows],
            }
            return result

        return ServiceResult.success(SendResult(message=message, uploads=uploads))

    # -------------------------------------------------------------------------
    # Mutations by the sender
    # -------------------------------------------------------------------------

    @classmethod
    def edit(cls, user: User, message_id, content: str) -> ServiceResult[Message]:
        """
        Replace a message's content.

        Only the original sender may edit. No history is kept; concurrent
        edits by the same sender are last-write-wins.

        Error codes:
            NOT_FOUND: Message missing or not visible
            FORBIDDEN: Caller is not the sender
            VALIDATION_ERROR: Message deleted, or content empty/too long
        """
        lookup = get_member_message(message_id, user)
        if not lookup:
            return lookup
        message, _member = lookup.data

        if message.sender_id != user.pk:
            cls.get_logger().warning(
                f"User {user.pk} attempted to edit message {message.id} they did not send"
            )
            return ServiceResult.failure(
                "You can only edit your own messages",
                error_code=ErrorCode.FORBIDDEN,
            )
        if message.is_deleted:
            return ServiceResult.failure(
                "Deleted messages cannot be edited",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        content = (content or "").strip()
        if not content:
            return ServiceResult.failure(
                "Message content cannot be empty",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content exceeds {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        with cls.atomic():
            message.content = content
            message.is_edited = True
            message.edited_at = timezone.now()
            message.save(update_fields=["content", "is_edited", "edited_at", "updated_at"])
            broadcast_on_commit(
                message.thread_id,
                REALTIME_CONFIG.EVENT_MESSAGE_UPDATED,
                {"message": message_payload(message)},
            )

        cls.get_logger().info(f"User {user.pk} edited message {message.id}")
        return ServiceResult.success(message)

    @classmethod
    def delete(cls, user: User, message_id) -> ServiceResult[Message]:
        """
        Soft delete a message for everyone.

        Content is nulled and the row keeps its position. Attachments stay
        referenced but refuse download grants. Deleting an already deleted
        message is a no-op.

        Error codes:
            NOT_FOUND: Message missing or not visible
            FORBIDDEN: Caller is not the sender
        """
        lookup = get_member_message(message_id, user)
        if not lookup:
            return lookup
        message, _member = lookup.data

        if message.sender_id != user.pk:
            cls.get_logger().warning(
                f"User {user.pk} attempted to delete message {message.id} they did not send"
            )
            return ServiceResult.failure(
                "You can only delete your own messages",
                error_code=ErrorCode.FORBIDDEN,
            )
        if message.is_deleted:
            return ServiceResult.success(message)

        with cls.atomic():
            message.soft_delete()
            broadcast_on_commit(
                message.thread_id,
                REALTIME_CONFIG.EVENT_MESSAGE_UPDATED,
                {"message": message_payload(message)},
            )

        cls.get_logger().info(f"User {user.pk} deleted message {message.id}")
        return ServiceResult.success(message)

    @classmethod
    def delete_for_me(cls, user: User, message_id) -> ServiceResult[None]:
        """
        Hide a message from the caller's view only.

        Idempotent: hiding an already hidden message succeeds without change.
        """
        lookup = get_member_message(message_id, user)
        if not lookup:
            return lookup
        message, _member = lookup.data

        with cls.atomic():
            _hide, created = MessageHide.objects.get_or_create(user=user, message=message)
            if created:
                broadcast_on_commit(
                    message.thread_id,
                    REALTIME_CONFIG.EVENT_MESSAGE_HIDDEN,
                    {"message_id": str(message.id), "user_id": user.pk},
                )

        if created:
            cls.get_logger().info(f"User {user.pk} hid message {message.id}")
        return ServiceResult.success(None)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @classmethod
    def visible_messages(cls, thread: Thread, user: User):
        """Messages of the thread not hidden for the user."""
        return thread.messages.exclude(hides__user_id=user.pk)

    @classmethod
    def fetch_page(
        cls,
        user: User,
        thread_id,
        cursor: str | None = None,
        limit: int | None = None,
        advance_read: bool = False,
    ) -> ServiceResult[MessagePage]:
        """
        Fetch the page of messages strictly older than the cursor.

        Args:
            user: Caller (must be an active member)
            thread_id: Thread to read
            cursor: Token from a previous page's next_cursor (None = newest)
            limit: Page size (default 40, capped at 80)
            advance_read: Move the caller's read pointer to the newest row
                returned (monotonic, never rewinds)

        Returns:
            ServiceResult with MessagePage (chronological order)

        Error codes:
            NOT_FOUND: Thread missing or caller is not an active member
            VALIDATION_ERROR: Malformed cursor
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        limit = min(limit or MESSAGE_CONFIG.DEFAULT_PAGE_SIZE, MESSAGE_CONFIG.MAX_PAGE_SIZE)
        limit = max(limit, 1)

        queryset = cls.visible_messages(thread, user)
        if cursor:
            try:
                position = MessageCursor.decode(cursor)
            except ValueError:
                return ServiceResult.failure(
                    "Invalid cursor",
                    error_code=ErrorCode.VALIDATION_ERROR,
                )
            queryset = queryset.filter(
                Q(created_at__lt=position.created_at)
                | Q(created_at=position.created_at, id__lt=position.id)
            )

        rows = list(
            queryset.prefetch_related("attachments")
            .order_by("-created_at", "-id")[:limit]
        )
        rows.reverse()

        next_cursor = None
        if len(rows) == limit:
            next_cursor = MessageCursor.for_message(rows[0]).encode()

        if advance_read and rows:
            cls._advance_read_pointer(user, member, rows[-1])

        return ServiceResult.success(MessagePage(messages=rows, next_cursor=next_cursor))

    @classmethod
    def countable_messages(cls, user: User):
        """
        Messages that can count as unread for the user.

        Own messages, system events and rows hidden for the user never do.
        """
        return (
            Message.objects.exclude(sender_id=user.pk)
            .exclude(message_type=MessageType.SYSTEM)
            .exclude(hides__user_id=user.pk)
        )

    @classmethod
    def unread_count(cls, member: ThreadMember, user: User) -> int:
        """Messages newer than the member's read pointer."""
        inbox = cls.annotate_inbox(ThreadMember.objects.filter(pk=member.pk), user)
        return inbox.values_list("unread_count", flat=True).get()

    @classmethod
    def annotate_inbox(cls, memberships, user: User):
        """
        Annotate a ThreadMember queryset with unread_count and last_message_id.

        Both are correlated subqueries; the inbox is read in a single query.
        """
        countable = cls.countable_messages(user).filter(thread_id=OuterRef("thread_id"))
        after_pointer = countable.filter(
            Q(created_at__gt=OuterRef("last_read_message__created_at"))
            | Q(
                created_at=OuterRef("last_read_message__created_at"),
                id__gt=OuterRef("last_read_message_id"),
            )
        )
        last_message = (
            Message.objects.filter(thread_id=OuterRef("thread_id"))
            .exclude(hides__user_id=user.pk)
            .order_by("-created_at", "-id")
            .values("id")[:1]
        )
        return memberships.annotate(
            unread_count=Case(
                When(last_read_message__isnull=True, then=count_subquery(countable)),
                default=count_subquery(after_pointer),
                output_field=IntegerField(),
            ),
            last_message_id=Subquery(last_message),
        )

    @classmethod
    def search(cls, user: User, thread_id, query: str | None) -> ServiceResult[list[Message]]:
        """
        Case-insensitive substring search over non-deleted messages.

        Returns up to 50 matches, newest first. A blank query returns [].
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, _member = lookup.data

        term = (query or "").strip()
        if not term:
            return ServiceResult.success([])

        results = list(
            cls.visible_messages(thread, user)
            .filter(is_deleted=False, content__icontains=term)
            .exclude(message_type=MessageType.SYSTEM)
            .prefetch_related("attachments")
            .order_by("-created_at", "-id")[: MESSAGE_CONFIG.SEARCH_MAX_RESULTS]
        )
        return ServiceResult.success(results)

    # -------------------------------------------------------------------------
    # Read pointer
    # -------------------------------------------------------------------------

    @classmethod
    def _advance_read_pointer(
        cls,
        user: User,
        member: ThreadMember,
        message: Message,
    ) -> bool:
        """
        Internal: move the read pointer forward if message is newer.

        Re-reads the member row under lock so concurrent calls cannot
        rewind the pointer. Returns whether the pointer moved.
        """
        with cls.atomic():
            locked = (
                ThreadMember.objects.select_for_update()
                .select_related("last_read_message")
                .get(pk=member.pk)
            )
            if not is_after(message, locked.last_read_message):
                return False

            now = timezone.now()
            locked.last_read_message = message
            locked.last_read_at = now
            locked.save(update_fields=["last_read_message", "last_read_at", "updated_at"])

            if ChatSettings.for_user(user.pk).show_read_receipts:
                broadcast_on_commit(
                    member.thread_id,
                    REALTIME_CONFIG.EVENT_READ_UPDATED,
                    {
                        "thread_id": str(member.thread_id),
                        "user_id": user.pk,
                        "message_id": str(message.id),
                        "read_at": now.isoformat(),
                    },
                )

        member.last_read_message = message
        member.last_read_at = now
        return True

    @classmethod
    def mark_read(cls, user: User, thread_id, message_id) -> ServiceResult[ThreadMember]:
        """
        Advance the caller's read pointer to message_id.

        Monotonic: a message that is not strictly later than the current
        pointer leaves it unchanged (success, no error).

        Error codes:
            NOT_FOUND: Thread not visible, or message not in this thread
        """
        lookup = get_member_thread(thread_id, user)
        if not lookup:
            return lookup
        thread, member = lookup.data

        pk = parse_uuid(message_id)
        message = thread.messages.filter(pk=pk).first() if pk else None
        if message is None:
            return message_not_found()

        if cls._advance_read_pointer(user, member, message):
            cls.get_logger().debug(
                f"User {user.pk} read thread {thread.id} up to {message.id}"
            )
        return ServiceResult.success(member)

    # -------------------------------------------------------------------------
    # Bookmarks
    # -------------------------------------------------------------------------

    @classmethod
    def toggle_pinned(cls, user: User, message_id) -> ServiceResult[bool]:
        """
        Toggle the caller's bookmark on a message.

        Returns:
            ServiceResult with True when pinned, False when unpinned
        """
        lookup = get_member_message(message_id, user)
        if not lookup:
            return lookup
        message, _member = lookup.data

        deleted, _ = PinnedMessage.objects.filter(user=user, message=message).delete()
        if deleted:
            return ServiceResult.success(False)

        if message.is_deleted:
            return ServiceResult.failure(
                "Deleted messages cannot be pinned",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        PinnedMessage.objects.get_or_create(
            user=user, message=message, defaults={"thread": message.thread}
        )
        return ServiceResult.success(True)
