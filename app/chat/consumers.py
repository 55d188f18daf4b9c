"""
WebSocket consumer for the messaging core.

Consumers:
    ThreadConsumer: Subscribes one socket to one thread's events

Authentication:
    JWTAuthMiddleware attaches the user to self.scope["user"]. The token
    arrives as ?token=<jwt> or as the "jwt, <token>" subprotocol.

Channel Groups:
    Each thread has a channel group named "thread_{thread_id}" (see
    chat.events). Services publish to it after commit.

Message Types (from client):
    - typing: {"type": "typing", "is_typing": true}
    - read: {"type": "read", "message_id": "<uuid>"}
    - ping: {"type": "ping"}

Message Types (to client):
    - <event>: {"type": "message.created", "payload": {...}} etc.
    - pong: Reply to ping
    - error: {"type": "error", "error": "...", "error_code": "..."}

Close Codes:
    4001: Not authenticated
    4003: Not an active member of the thread
    4004: Thread does not exist
"""

from __future__ import annotations

import logging
from uuid import UUID

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from chat.constants import REALTIME_CONFIG
from chat.events import thread_group_name
from chat.middleware import SUBPROTOCOL
from chat.models import Thread
from chat.services import MessageService, TypingService
from core.exceptions import ErrorCode

logger = logging.getLogger(__name__)


class ThreadConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for one thread.

    Handles:
        - Connection authentication and membership checks
        - Joining/leaving the thread's channel group
        - Typing indicators and read pointers sent by the client
        - Relaying thread events from the channel layer

    Attributes:
        thread_id: UUID of the connected thread
        group_name: Channel layer group name for the thread
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.thread_id: UUID | None = None
        self.group_name: str | None = None

    @property
    def user(self):
        return self.scope.get("user")

    async def connect(self):
        """
        Handle WebSocket connection.

        Validates:
            1. User is authenticated (else 4001)
            2. Thread exists and is live (else 4004)
            3. User is an active member (else 4003)
        """
        self.thread_id = self.scope["url_route"]["kwargs"]["thread_id"]
        user = self.user

        if not user or not user.is_authenticated:
            logger.warning(f"Rejected unauthenticated connection to thread {self.thread_id}")
            await self.close(code=REALTIME_CONFIG.CLOSE_UNAUTHENTICATED)
            return

        thread_exists, is_member = await self._check_membership()
        if not thread_exists:
            logger.warning(f"User {user.pk} tried to connect to unknown thread {self.thread_id}")
            await self.close(code=REALTIME_CONFIG.CLOSE_NOT_FOUND)
            return
        if not is_member:
            logger.warning(f"User {user.pk} is not a member of thread {self.thread_id}")
            await self.close(code=REALTIME_CONFIG.CLOSE_NOT_MEMBER)
            return

        self.group_name = thread_group_name(self.thread_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)

        if SUBPROTOCOL in self.scope.get("subprotocols", []):
            await self.accept(subprotocol=SUBPROTOCOL)
        else:
            await self.accept()
        logger.info(f"User {user.pk} connected to thread {self.thread_id}")

    async def disconnect(self, close_code):
        """Leave the channel group if one was joined."""
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)
            logger.info(
                f"User {self.user.pk} disconnected from thread {self.thread_id} "
                f"(code {close_code})"
            )
            self.group_name = None

    async def receive_json(self, content, **kwargs):
        """
        Handle incoming client frames.

        Args:
            content: Parsed JSON message from client
        """
        message_type = content.get("type") if isinstance(content, dict) else None

        if message_type == "ping":
            await self.send_json({"type": "pong"})
        elif message_type == "typing":
            await self._broadcast_typing(bool(content.get("is_typing", False)))
        elif message_type == "read":
            await self._handle_read(content.get("message_id"))
        else:
            await self.send_error(
                f"Unknown message type: {message_type}",
                ErrorCode.VALIDATION_ERROR,
            )

    async def send_error(self, error: str, error_code: str | None):
        await self.send_json({"type": "error", "error": error, "error_code": error_code})

    async def _handle_read(self, message_id):
        result = await self._mark_read(message_id)
        if not result:
            await self.send_error(result.error, result.error_code)

    async def thread_event(self, event):
        """
        Handle thread.event messages from the channel layer.

        message.hidden is only delivered to the sockets of the user who
        hid the message, and a user's own typing events are not echoed
        back. After a membership change the socket is closed if the user
        is no longer an active member.
        """
        name = event["event"]
        payload = event["payload"]
        user_id = self.user.pk

        if name == REALTIME_CONFIG.EVENT_MESSAGE_HIDDEN and payload.get("user_id") != user_id:
            return
        if name == REALTIME_CONFIG.EVENT_TYPING and payload.get("user_id") == user_id:
            return

        await self.send_json({"type": name, "payload": payload})

        if name == REALTIME_CONFIG.EVENT_THREAD_UPDATED:
            _thread_exists, is_member = await self._check_membership()
            if not is_member:
                await self.close(code=REALTIME_CONFIG.CLOSE_NOT_MEMBER)

    @database_sync_to_async
    def _check_membership(self) -> tuple[bool, bool]:
        """(thread is live, user is an active member)."""
        thread = Thread.objects.filter(pk=self.thread_id, is_deleted=False).first()
        if thread is None:
            return False, False
        return True, thread.get_active_member(self.user.pk) is not None

    @database_sync_to_async
    def _broadcast_typing(self, is_typing: bool):
        return TypingService.broadcast(self.user, self.thread_id, is_typing)

    @database_sync_to_async
    def _mark_read(self, message_id):
        return MessageService.mark_read(self.user, self.thread_id, message_id)
