"""
Tests for the messaging HTTP surface.

This module tests:
- Authentication and dispatch on the single messaging endpoint
- Envelope shape and HTTP status mapping for failures
- Representative GET types and POST actions end to end
- LocalStorageView byte transfer with signed grants

Service behavior is covered in the service test modules; these tests check
that requests reach the right service with the right arguments and that
results come back in the documented envelope.
"""

from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from freezegun import freeze_time
from rest_framework import status

from chat.constants import ATTACHMENT_CONFIG
from chat.models import Attachment, ChatSettings, Thread, ThreadType, UploadStatus
from chat.services import AttachmentService, MessageService
from chat.storage import LocalStorageBackend
from chat.tests.conftest import command, query
from core.exceptions import ErrorCode, UpstreamFailureError


# =============================================================================
# Dispatch and envelope
# =============================================================================


class TestAuthentication:
    def test_get_requires_authentication(self, db, api_client):
        """
        Unauthenticated requests get the UNAUTHORIZED envelope.

        Why it matters: Clients key their re-login flow on error_code.
        """
        response = query(api_client, "threads")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data["ok"] is False
        assert response.data["error_code"] == ErrorCode.UNAUTHORIZED

    def test_post_requires_authentication(self, db, api_client):
        response = command(api_client, "thread.openDirect", otherUserId=1)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data["error_code"] == ErrorCode.UNAUTHORIZED

    def test_invalid_token(self, db, api_client):
        api_client.credentials(HTTP_AUTHORIZATION="Bearer not-a-token")

        response = query(api_client, "threads")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data["error_code"] == ErrorCode.UNAUTHORIZED


class TestDispatch:
    def test_unknown_type(self, db, member_client):
        response = query(member_client, "everything")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == ErrorCode.VALIDATION_ERROR

    def test_unknown_action(self, db, member_client):
        response = command(member_client, "thread.explode")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_invalid_parameters_report_fields(self, db, member_client):
        response = query(member_client, "messages", threadId="not-a-uuid")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error"] == "Invalid request"
        assert "threadId" in response.data["errors"]

    def test_not_found_maps_to_404(self, db, outsider_client, group_thread):
        """
        Threads the caller does not belong to look like missing threads.

        Why it matters: Thread ids must not leak through status codes.
        """
        response = query(outsider_client, "messages", threadId=str(group_thread.id))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data == {
            "ok": False,
            "error": "Thread not found",
            "error_code": ErrorCode.NOT_FOUND,
        }


# =============================================================================
# GET types
# =============================================================================


class TestQueries:
    def test_threads(self, db, member_client, group_thread, direct_thread):
        response = query(member_client, "threads")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["ok"] is True
        ids = {row["id"] for row in response.data["threads"]}
        assert ids == {str(group_thread.id), str(direct_thread.id)}

    def test_messages_page_advances_read_pointer(
        self, db, member_client, member_user, owner_user, group_thread
    ):
        message = MessageService.send(owner_user, group_thread.id, content="Hi").data.message

        response = query(member_client, "messages", threadId=str(group_thread.id), limit=10)

        assert response.status_code == status.HTTP_200_OK
        assert [m["id"] for m in response.data["messages"]] == [str(message.id)]
        assert response.data["messages"][0]["sender"]["display_name"] == "Dr. Owner"
        assert response.data["next_cursor"] is None
        member = group_thread.get_active_member(member_user.pk)
        assert member.last_read_message_id == message.id

    def test_thread_info(self, db, member_client, group_thread):
        response = query(member_client, "threadInfo", threadId=str(group_thread.id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["thread"]["title"] == "Ward 3"
        assert len(response.data["members"]) == 3
        assert response.data["attachments"] == []
        assert response.data["pinned_messages"] == []

    def test_search(self, db, member_client, owner_user, group_thread):
        MessageService.send(owner_user, group_thread.id, content="CBC results")

        response = query(member_client, "search", threadId=str(group_thread.id), q="cbc")

        assert len(response.data["messages"]) == 1

    def test_directory(self, db, member_client, owner_user):
        response = query(member_client, "directory", q="owner")

        assert [u["id"] for u in response.data["users"]] == [owner_user.pk]

    def test_presence(self, db, member_client, other_user):
        response = query(member_client, "presence", userId=other_user.pk)

        assert response.data["presence"]["status"] == "offline"

    def test_settings_defaults(self, db, member_client):
        response = query(member_client, "settings")

        assert response.data["settings"]["accept_new_chats"] is True


# =============================================================================
# POST actions
# =============================================================================


class TestThreadActions:
    def test_open_direct(self, db, member_client, other_user):
        response = command(member_client, "thread.openDirect", otherUserId=other_user.pk)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["thread"]["thread_type"] == ThreadType.DIRECT

    def test_open_direct_not_accepting_is_403(self, db, member_client, other_user):
        ChatSettings.objects.create(user=other_user, accept_new_chats=False)

        response = command(member_client, "thread.openDirect", otherUserId=other_user.pk)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == ErrorCode.NOT_ACCEPTING

    def test_create_group_reports_unknown_members(self, db, owner_client, member_user):
        response = command(
            owner_client, "thread.createGroup", title="Team", memberIds=[member_user.pk, 555555]
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["errors"] == {"memberIds": ["555555"]}
        assert not Thread.objects.filter(title="Team").exists()

    def test_mute_with_duration(self, db, member_client, group_thread):
        response = command(
            member_client, "thread.mute", threadId=str(group_thread.id), duration="1h"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["member"]["muted"] is True
        assert response.data["member"]["muted_until"] is not None

    def test_mute_until_explicit_time(self, db, member_client, group_thread):
        """
        mutedUntil sets the end of the mute window.

        Why it matters: The client sends a chosen end time under this key;
        an unrecognized key would silently mute forever.
        """
        response = command(
            member_client,
            "thread.mute",
            threadId=str(group_thread.id),
            mutedUntil="2030-01-01T09:00:00Z",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["member"]["muted_until"].startswith("2030-01-01T09:00:00")

    def test_member_cannot_remove(self, db, member_client, admin_user, group_thread):
        response = command(
            member_client,
            "thread.removeMember",
            threadId=str(group_thread.id),
            userId=admin_user.pk,
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_set_role(self, db, owner_client, member_user, group_thread):
        response = command(
            owner_client,
            "thread.setRole",
            threadId=str(group_thread.id),
            userId=member_user.pk,
            role="admin",
        )

        assert response.data["member"]["role"] == "admin"


class TestMessageActions:
    def test_send_with_attachment_returns_upload_grant(self, db, member_client, group_thread):
        """
        Sending with attachments returns the message and its upload grants.

        Why it matters: This is the only place the client learns where to
        PUT the bytes.
        """
        response = command(
            member_client,
            "message.send",
            threadId=str(group_thread.id),
            content="Scan attached",
            attachments=[{"fileName": "scan.png", "fileType": "image/png", "fileSize": 10}],
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["message"]["message_type"] == "image"
        (upload,) = response.data["uploads"]
        assert upload["signed_url"].startswith("/api/v1/chat/storage/")
        assert response.data["message"]["attachments"][0]["file_name"] == "scan.png"

    def test_send_with_failed_signing_returns_committed_row(
        self, db, member_client, group_thread
    ):
        """
        A 502 from signing still names the committed message and attachments.

        Why it matters: The client re-requests grants for these ids instead
        of sending the message again.
        """
        with patch.object(
            AttachmentService,
            "issue_upload_grants",
            side_effect=UpstreamFailureError("signing down"),
        ):
            response = command(
                member_client,
                "message.send",
                threadId=str(group_thread.id),
                attachments=[{"fileName": "scan.png", "fileType": "image/png", "fileSize": 10}],
            )

        attachment = Attachment.objects.get(message__thread=group_thread)
        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.data["error_code"] == ErrorCode.UPSTREAM_FAILURE
        assert response.data["details"]["message"]["id"] == str(attachment.message_id)
        assert response.data["details"]["attachment_ids"] == [str(attachment.id)]

    def test_send_too_large_is_413(self, db, member_client, group_thread):
        response = command(
            member_client,
            "message.send",
            threadId=str(group_thread.id),
            attachments=[
                {"fileName": "big.mov", "fileSize": ATTACHMENT_CONFIG.MAX_FILE_SIZE_BYTES + 1}
            ],
        )

        assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        assert response.data["error_code"] == ErrorCode.PAYLOAD_TOO_LARGE

    def test_edit_by_other_member_is_403(self, db, owner_client, member_user, group_thread):
        message = MessageService.send(member_user, group_thread.id, content="Mine").data.message

        response = command(owner_client, "message.edit", messageId=str(message.id), content="x")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_mark_read(self, db, member_client, owner_user, group_thread):
        message = MessageService.send(owner_user, group_thread.id, content="Hi").data.message

        response = command(
            member_client,
            "message.markRead",
            threadId=str(group_thread.id),
            messageId=str(message.id),
        )

        assert response.data["member"]["last_read_message_id"] == str(message.id)

    def test_download_url(self, db, member_client, member_user, group_thread):
        sent = MessageService.send(
            member_user, group_thread.id, attachments=[{"file_name": "a.pdf"}]
        ).data

        response = command(
            member_client,
            "file.getDownloadUrl",
            storagePath=sent.message.attachments.get().storage_path,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["expires_in_seconds"] == 60
        assert "token=" in response.data["url"]


class TestPreferenceActions:
    def test_settings_update_is_partial(self, db, member_client, member_user):
        response = command(member_client, "settings.update", showReadReceipts=False)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["settings"]["show_read_receipts"] is False
        assert ChatSettings.objects.get(user=member_user).accept_new_chats is True

    def test_block_toggle(self, db, member_client, other_user):
        response = command(member_client, "user.blockToggle", userId=other_user.pk)

        assert response.data["is_blocked"] is True

    def test_presence_update(self, db, member_client):
        response = command(member_client, "presence.update", status="busy", statusMessage="OR")

        assert response.data["presence"]["status"] == "busy"
        assert response.data["presence"]["status_message"] == "OR"

    def test_quick_reply_roundtrip(self, db, member_client):
        created = command(member_client, "quickReply.create", title="Thanks", content="Thank you")
        quick_reply_id = created.data["quick_reply"]["id"]

        listed = query(member_client, "quickReplies")
        deleted = command(member_client, "quickReply.delete", quickReplyId=quick_reply_id)

        assert [q["id"] for q in listed.data["quick_replies"]] == [quick_reply_id]
        assert deleted.data == {"ok": True}


# =============================================================================
# LocalStorageView
# =============================================================================


class TestLocalStorageView:
    @pytest.fixture
    def upload(self, member_user, group_thread):
        sent = MessageService.send(
            member_user,
            group_thread.id,
            attachments=[{"file_name": "lab.pdf", "file_type": "application/pdf"}],
        ).data
        return sent.uploads[0]

    def put_bytes(self, api_client, url, body):
        return api_client.put(url, data=body, content_type="application/octet-stream")

    def test_put_then_get(self, db, api_client, upload, member_user):
        """
        Bytes uploaded with the grant are served back with a download grant.

        Why it matters: Local development exercises the same grant flow as S3.
        """
        response = self.put_bytes(api_client, upload["signed_url"], b"%PDF-1.7")

        assert response.status_code == status.HTTP_200_OK
        attachment = Attachment.objects.get(pk=upload["attachment_id"])
        assert attachment.upload_status == UploadStatus.UPLOADED

        download = LocalStorageBackend().create_download_grant(upload["storage_path"])
        response = api_client.get(download.url)

        assert response.status_code == status.HTTP_200_OK
        assert b"".join(response.streaming_content) == b"%PDF-1.7"

    def test_get_with_upload_grant_rejected(self, db, api_client, upload):
        self.put_bytes(api_client, upload["signed_url"], b"data")

        response = api_client.get(upload["signed_url"])

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_token_for_other_path_rejected(self, db, api_client, upload):
        token = parse_qs(urlparse(upload["signed_url"]).query)["token"][0]

        response = self.put_bytes(
            api_client, f"/api/v1/chat/storage/other/path.pdf?token={token}", b"data"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_expired_grant_is_410(self, db, api_client, member_user, group_thread):
        with freeze_time("2026-05-01 10:00:00"):
            sent = MessageService.send(
                member_user, group_thread.id, attachments=[{"file_name": "late.pdf"}]
            ).data
        url = sent.uploads[0]["signed_url"]

        with freeze_time("2026-05-01 10:30:00"):
            response = self.put_bytes(api_client, url, b"data")

        assert response.status_code == status.HTTP_410_GONE
        assert response.data["error_code"] == ErrorCode.GRANT_EXPIRED

    def test_body_too_large_is_413(self, db, api_client, upload):
        body = b"x" * (ATTACHMENT_CONFIG.MAX_FILE_SIZE_BYTES + 1)

        response = self.put_bytes(api_client, upload["signed_url"], body)

        assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        attachment = Attachment.objects.get(pk=upload["attachment_id"])
        assert attachment.upload_status == UploadStatus.PENDING

    def test_missing_file_is_404(self, db, api_client, upload):
        download = LocalStorageBackend().create_download_grant(upload["storage_path"])

        response = api_client.get(download.url)

        assert response.status_code == status.HTTP_404_NOT_FOUND
