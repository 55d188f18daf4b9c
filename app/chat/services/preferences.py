"""
Per-user chat preferences: blocks, settings, quick replies and reports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model

from chat.models import ChatBlock, ChatSettings, QuickReply, UserReport
from chat.services.access import get_member_message, parse_uuid
from core.exceptions import ErrorCode
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


def find_other_user(user: User, target_user_id: int) -> ServiceResult:
    if target_user_id == user.pk:
        return ServiceResult.failure(
            "You cannot do this to yourself",
            error_code=ErrorCode.VALIDATION_ERROR,
        )
    target = get_user_model().objects.filter(pk=target_user_id).first()
    if target is None:
        return ServiceResult.failure("User not found", error_code=ErrorCode.NOT_FOUND)
    return ServiceResult.success(target)


class BlockService(BaseService):
    """Directional user blocks."""

    @classmethod
    def toggle(cls, user: User, target_user_id: int) -> ServiceResult[bool]:
        """
        Block or unblock target_user_id.

        Returns:
            ServiceResult with True when the target is now blocked
        """
        lookup = find_other_user(user, target_user_id)
        if not lookup:
            return lookup
        target = lookup.data

        deleted, _ = ChatBlock.objects.filter(blocker=user, blocked=target).delete()
        if deleted:
            cls.get_logger().info(f"User {user.pk} unblocked {target.pk}")
            return ServiceResult.success(False)

        ChatBlock.objects.get_or_create(blocker=user, blocked=target)
        cls.get_logger().info(f"User {user.pk} blocked {target.pk}")
        return ServiceResult.success(True)


class ChatSettingsService(BaseService):
    """Read and update ChatSettings."""

    @classmethod
    def get(cls, user: User) -> ServiceResult[ChatSettings]:
        return ServiceResult.success(ChatSettings.for_user(user.pk))

    @classmethod
    def update(cls, user: User, **changes) -> ServiceResult[ChatSettings]:
        """Apply a partial update. Unknown keys are rejected."""
        unknown = sorted(set(changes) - set(ChatSettings.EDITABLE_FIELDS))
        if unknown:
            return ServiceResult.failure(
                f"Unknown settings: {', '.join(unknown)}",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        chat_settings, _ = ChatSettings.objects.get_or_create(user=user)
        if changes:
            for field_name, value in changes.items():
                setattr(chat_settings, field_name, value)
            chat_settings.save(update_fields=[*changes, "updated_at"])
            cls.get_logger().info(f"User {user.pk} updated chat settings: {sorted(changes)}")
        return ServiceResult.success(chat_settings)


class QuickReplyService(BaseService):
    """CRUD for a user's canned responses."""

    EDITABLE_FIELDS = ("title", "content", "category", "shortcut")

    @classmethod
    def list_for_user(cls, user: User) -> ServiceResult[list[QuickReply]]:
        return ServiceResult.success(list(QuickReply.objects.filter(user=user)))

    @classmethod
    def _get_owned(cls, user: User, quick_reply_id) -> QuickReply | None:
        pk = parse_uuid(quick_reply_id)
        if pk is None:
            return None
        return QuickReply.objects.filter(pk=pk, user=user).first()

    @classmethod
    def create(
        cls,
        user: User,
        title: str,
        content: str,
        category: str = "",
        shortcut: str = "",
    ) -> ServiceResult[QuickReply]:
        validation = cls.validate_required(title=title, content=content)
        if validation is not None:
            return validation

        quick_reply = QuickReply.objects.create(
            user=user,
            title=title.strip(),
            content=content,
            category=category or "",
            shortcut=shortcut or "",
        )
        return ServiceResult.success(quick_reply)

    @classmethod
    def update(cls, user: User, quick_reply_id, **changes) -> ServiceResult[QuickReply]:
        quick_reply = cls._get_owned(user, quick_reply_id)
        if quick_reply is None:
            return ServiceResult.failure("Quick reply not found", error_code=ErrorCode.NOT_FOUND)

        changes = {k: v for k, v in changes.items() if k in cls.EDITABLE_FIELDS}
        for required in ("title", "content"):
            if required in changes and not (changes[required] or "").strip():
                return ServiceResult.failure(
                    f"{required} cannot be blank",
                    error_code=ErrorCode.VALIDATION_ERROR,
                    errors={required: ["This field may not be blank."]},
                )

        if changes:
            for field_name, value in changes.items():
                setattr(quick_reply, field_name, value)
            quick_reply.save(update_fields=[*changes, "updated_at"])
        return ServiceResult.success(quick_reply)

    @classmethod
    def delete(cls, user: User, quick_reply_id) -> ServiceResult[None]:
        quick_reply = cls._get_owned(user, quick_reply_id)
        if quick_reply is None:
            return ServiceResult.failure("Quick reply not found", error_code=ErrorCode.NOT_FOUND)
        quick_reply.delete()
        return ServiceResult.success(None)


class ReportService(BaseService):
    """Abuse reports."""

    @classmethod
    def report(
        cls,
        user: User,
        target_user_id: int,
        message_id=None,
        reason: str = "",
    ) -> ServiceResult[UserReport]:
        """
        File a report against target_user_id.

        When message_id is given it must be a message of the target in a
        thread the reporter belongs to.
        """
        lookup = find_other_user(user, target_user_id)
        if not lookup:
            return lookup
        target = lookup.data

        message = None
        if message_id is not None:
            message_lookup = get_member_message(message_id, user)
            if not message_lookup:
                return message_lookup
            message, _member = message_lookup.data
            if message.sender_id != target.pk:
                return ServiceResult.failure(
                    "Message was not sent by the reported user",
                    error_code=ErrorCode.VALIDATION_ERROR,
                )

        report = UserReport.objects.create(
            reporter=user,
            reported=target,
            message=message,
            reason=reason or "",
        )
        cls.get_logger().warning(
            f"User {user.pk} reported user {target.pk} (report {report.pk})"
        )
        return ServiceResult.success(report)
