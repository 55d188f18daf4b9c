"""
Tests for ThreadConsumer and JWTAuthMiddleware.

This module tests:
- Connection checks and close codes (4001, 4003, 4004)
- Token via query string and via the "jwt" subprotocol
- Client frames: ping, typing, read
- Relay of thread events, including per-user filtering
- Closing the socket after the user loses membership

Tests run against the in-memory channel layer configured in the root
conftest, with real transactions so on_commit broadcasts fire.
"""

import uuid

import pytest
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator

from chat.events import thread_group_name
from chat.middleware import JWTAuthMiddleware
from chat.routing import websocket_urlpatterns
from chat.services import MembershipService, MessageService
from chat.tests.conftest import jwt_for

pytestmark = pytest.mark.django_db(transaction=True)

application = JWTAuthMiddleware(URLRouter(websocket_urlpatterns))


def thread_path(thread_id, token=None) -> str:
    path = f"/ws/threads/{thread_id}/"
    return f"{path}?token={token}" if token else path


async def connect(thread_id, user):
    communicator = WebsocketCommunicator(application, thread_path(thread_id, jwt_for(user)))
    connected, _ = await communicator.connect()
    assert connected
    return communicator


# =============================================================================
# Connection
# =============================================================================


class TestConnect:
    async def test_member_connects(self, group_thread, member_user):
        communicator = await connect(group_thread.id, member_user)

        await communicator.send_json_to({"type": "ping"})

        assert await communicator.receive_json_from() == {"type": "pong"}
        await communicator.disconnect()

    async def test_subprotocol_token(self, group_thread, member_user):
        """
        Browsers pass the token as the second subprotocol.

        Why it matters: Browser WebSocket APIs cannot set headers.
        """
        communicator = WebsocketCommunicator(
            application,
            thread_path(group_thread.id),
            subprotocols=["jwt", jwt_for(member_user)],
        )

        connected, subprotocol = await communicator.connect()

        assert connected
        assert subprotocol == "jwt"
        await communicator.disconnect()

    async def test_unauthenticated_closes_4001(self, group_thread):
        communicator = WebsocketCommunicator(application, thread_path(group_thread.id))

        connected, code = await communicator.connect()

        assert not connected
        assert code == 4001

    async def test_invalid_token_closes_4001(self, group_thread):
        communicator = WebsocketCommunicator(
            application, thread_path(group_thread.id, "garbage")
        )

        connected, code = await communicator.connect()

        assert not connected
        assert code == 4001

    async def test_unknown_thread_closes_4004(self, member_user):
        communicator = WebsocketCommunicator(
            application, thread_path(uuid.uuid4(), jwt_for(member_user))
        )

        connected, code = await communicator.connect()

        assert not connected
        assert code == 4004

    async def test_non_member_closes_4003(self, group_thread, outsider):
        communicator = WebsocketCommunicator(
            application, thread_path(group_thread.id, jwt_for(outsider))
        )

        connected, code = await communicator.connect()

        assert not connected
        assert code == 4003


# =============================================================================
# Client frames
# =============================================================================


class TestClientFrames:
    async def test_typing_reaches_others_but_not_sender(
        self, group_thread, member_user, owner_user
    ):
        """
        Typing is fanned out to other members and not echoed back.

        Why it matters: Showing your own typing indicator is a visual bug.
        """
        typist = await connect(group_thread.id, member_user)
        watcher = await connect(group_thread.id, owner_user)

        await typist.send_json_to({"type": "typing", "is_typing": True})

        event = await watcher.receive_json_from()
        assert event == {
            "type": "typing",
            "payload": {
                "thread_id": str(group_thread.id),
                "user_id": member_user.pk,
                "is_typing": True,
            },
        }
        assert await typist.receive_nothing()

        await typist.disconnect()
        await watcher.disconnect()

    async def test_read_advances_pointer(self, group_thread, member_user, owner_user):
        sent = await database_sync_to_async(MessageService.send)(
            owner_user, group_thread.id, content="Please review"
        )
        message = sent.data.message
        communicator = await connect(group_thread.id, member_user)

        await communicator.send_json_to({"type": "read", "message_id": str(message.id)})

        event = await communicator.receive_json_from()
        assert event["type"] == "read.updated"
        assert event["payload"]["message_id"] == str(message.id)
        await communicator.disconnect()

    async def test_read_unknown_message_returns_error(self, group_thread, member_user):
        communicator = await connect(group_thread.id, member_user)

        await communicator.send_json_to({"type": "read", "message_id": str(uuid.uuid4())})

        frame = await communicator.receive_json_from()
        assert frame["type"] == "error"
        assert frame["error_code"] == "NOT_FOUND"
        await communicator.disconnect()

    async def test_unknown_frame(self, group_thread, member_user):
        communicator = await connect(group_thread.id, member_user)

        await communicator.send_json_to({"type": "shout"})

        frame = await communicator.receive_json_from()
        assert frame["type"] == "error"
        assert frame["error_code"] == "VALIDATION_ERROR"
        await communicator.disconnect()


# =============================================================================
# Relayed events
# =============================================================================


class TestThreadEvents:
    async def test_message_created_after_commit(self, group_thread, member_user, owner_user):
        communicator = await connect(group_thread.id, member_user)

        sent = await database_sync_to_async(MessageService.send)(
            owner_user, group_thread.id, content="Results are in"
        )

        event = await communicator.receive_json_from()
        assert event["type"] == "message.created"
        assert event["payload"]["message"]["id"] == str(sent.data.message.id)
        assert event["payload"]["message"]["content"] == "Results are in"
        await communicator.disconnect()

    async def test_message_hidden_only_reaches_hiding_user(
        self, group_thread, member_user, owner_user
    ):
        """
        "Delete for me" is private to the user who hid the message.

        Why it matters: Other members must not learn what someone hid.
        """
        sent = await database_sync_to_async(MessageService.send)(
            owner_user, group_thread.id, content="Hi"
        )
        hider = await connect(group_thread.id, member_user)
        other = await connect(group_thread.id, owner_user)

        await database_sync_to_async(MessageService.delete_for_me)(
            member_user, sent.data.message.id
        )

        event = await hider.receive_json_from()
        assert event["type"] == "message.hidden"
        assert await other.receive_nothing()

        await hider.disconnect()
        await other.disconnect()

    async def test_removed_member_is_disconnected(
        self, group_thread, member_user, owner_user
    ):
        communicator = await connect(group_thread.id, member_user)

        await database_sync_to_async(MembershipService.remove_member)(
            owner_user, group_thread.id, member_user.pk
        )

        # The system message and the thread update arrive before the close
        received = [await communicator.receive_json_from() for _ in range(2)]
        assert {frame["type"] for frame in received} == {"message.created", "thread.updated"}
        close = await communicator.receive_output()
        assert close == {"type": "websocket.close", "code": 4003}

    async def test_remaining_member_stays_connected(
        self, group_thread, member_user, admin_user, owner_user
    ):
        communicator = await connect(group_thread.id, admin_user)

        await database_sync_to_async(MembershipService.remove_member)(
            owner_user, group_thread.id, member_user.pk
        )

        received = [await communicator.receive_json_from() for _ in range(2)]
        assert received[-1]["type"] == "thread.updated"
        assert await communicator.receive_nothing()
        await communicator.disconnect()

    async def test_relays_raw_group_event(self, group_thread, member_user):
        communicator = await connect(group_thread.id, member_user)

        await get_channel_layer().group_send(
            thread_group_name(group_thread.id),
            {"type": "thread.event", "event": "message.updated", "payload": {"message": {}}},
        )

        assert await communicator.receive_json_from() == {
            "type": "message.updated",
            "payload": {"message": {}},
        }
        await communicator.disconnect()
