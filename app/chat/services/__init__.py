"""
Messaging service layer.

This package provides the business logic of the messaging core,
encapsulating all operations on threads, members, messages, attachments,
presence and per-user preferences.

Services:
    ThreadService: Thread lifecycle and the threads-for-a-user read model
    MembershipService: Group membership (leave, add, remove, roles)
    MessageService: Append, edit, delete, paging, read pointers, search
    AttachmentService: Attachment rows and signed upload/download grants
    PresenceService: Presence rows
    TypingService: Ephemeral typing fan-out
    BlockService, ChatSettingsService, QuickReplyService, ReportService:
        Per-user preferences

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Infrastructure failures are raised by adapters and converted with
      handle_exception()
    - Real-time events are published after commit

Usage:
    from chat.services import ThreadService, MessageService

    result = ThreadService.open_direct(user, other_user_id=42)
    if result.success:
        thread = result.data

    result = MessageService.send(user, thread_id=thread.id, content="Hello")
"""

from chat.services.attachments import AttachmentService
from chat.services.messages import (
    MessageCursor,
    MessagePage,
    MessageService,
    SendResult,
)
from chat.services.preferences import (
    BlockService,
    ChatSettingsService,
    QuickReplyService,
    ReportService,
)
from chat.services.presence import PresenceInfo, PresenceService, TypingService
from chat.services.threads import (
    MembershipService,
    ThreadInfo,
    ThreadService,
    ThreadSummary,
)

__all__ = [
    "AttachmentService",
    "BlockService",
    "ChatSettingsService",
    "MembershipService",
    "MessageCursor",
    "MessagePage",
    "MessageService",
    "PresenceInfo",
    "PresenceService",
    "QuickReplyService",
    "ReportService",
    "SendResult",
    "ThreadInfo",
    "ThreadService",
    "ThreadSummary",
    "TypingService",
]
