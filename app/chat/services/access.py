"""
Visibility lookups shared by the thread, message and attachment services.

A thread is visible to its active members only. Anything else (unknown id,
malformed id, deleted thread, departed member) is reported as NOT_FOUND so
callers cannot probe for threads they do not belong to.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from chat.models import Message, Thread, ThreadMember
from core.exceptions import ErrorCode
from core.services import ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


def parse_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def thread_not_found() -> ServiceResult:
    return ServiceResult.failure("Thread not found", error_code=ErrorCode.NOT_FOUND)


def message_not_found() -> ServiceResult:
    return ServiceResult.failure("Message not found", error_code=ErrorCode.NOT_FOUND)


def get_member_thread(
    thread_id,
    user: User,
) -> ServiceResult[tuple[Thread, ThreadMember]]:
    """
    Load a live thread together with the caller's active membership.
    """
    pk = parse_uuid(thread_id)
    if pk is None:
        return thread_not_found()

    thread = Thread.objects.filter(pk=pk, is_deleted=False).first()
    if thread is None:
        return thread_not_found()

    member = thread.get_active_member(user.pk)
    if member is None:
        return thread_not_found()
    return ServiceResult.success((thread, member))


def get_member_message(
    message_id,
    user: User,
) -> ServiceResult[tuple[Message, ThreadMember]]:
    """Load a message in a live thread the caller actively belongs to."""
    pk = parse_uuid(message_id)
    if pk is None:
        return message_not_found()

    message = (
        Message.objects.select_related("thread")
        .filter(pk=pk, thread__is_deleted=False)
        .first()
    )
    if message is None:
        return message_not_found()

    member = message.thread.get_active_member(user.pk)
    if member is None:
        return message_not_found()
    return ServiceResult.success((message, member))
