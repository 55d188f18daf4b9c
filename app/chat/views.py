"""
HTTP views for the messaging API.

This module provides two endpoints:
- MessagingView: Single GET/POST surface dispatched on `type` / `action`
- LocalStorageView: Token-checked byte upload/download for local storage

URL Structure:
    /api/v1/chat/messaging/?type=<type>          GET
    /api/v1/chat/messaging/  {action, ...}       POST
    /api/v1/chat/storage/<path>?token=<token>    GET, PUT

Response envelope:
    Success: {"ok": true, ...payload}
    Failure: {"ok": false, "error": "...", "error_code": "...", "errors"?: {...}}

Design Decisions:
    - Authentication is checked before any dispatch so unauthenticated
      callers always receive the UNAUTHORIZED envelope
    - Request serializers validate and rename camelCase keys; handlers pass
      validated_data straight to the service layer
    - HTTP status comes from the failure's error code
      (core.exceptions.status_for_code)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from django.core.files.base import ContentFile
from django.http import FileResponse
from django.utils import timezone
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.exceptions import AuthenticationFailed, NotAuthenticated
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.services import DirectoryService
from chat.constants import ATTACHMENT_CONFIG
from chat.models import Attachment, UploadStatus
from chat.serializers import (
    AddMembersSerializer,
    AttachmentSerializer,
    ChatSettingsSerializer,
    CreateGroupSerializer,
    DirectoryQuerySerializer,
    DownloadUrlSerializer,
    EditMessageSerializer,
    MarkReadSerializer,
    MemberActionSerializer,
    MessageActionSerializer,
    MessagesQuerySerializer,
    MessageSerializer,
    MuteSerializer,
    OpenDirectSerializer,
    PresenceQuerySerializer,
    PresenceSerializer,
    PresenceUpdateSerializer,
    QuickReplyCreateSerializer,
    QuickReplyDeleteSerializer,
    QuickReplySerializer,
    QuickReplyUpdateSerializer,
    RefreshUploadSerializer,
    ReportSerializer,
    RequestUploadSerializer,
    SearchQuerySerializer,
    SendMessageSerializer,
    SetRoleSerializer,
    SettingsUpdateSerializer,
    ThreadMemberSerializer,
    ThreadQuerySerializer,
    ThreadSerializer,
    ThreadSummarySerializer,
    UserActionSerializer,
)
from chat.services import (
    AttachmentService,
    BlockService,
    ChatSettingsService,
    MembershipService,
    MessageService,
    PresenceService,
    QuickReplyService,
    ReportService,
    ThreadService,
)
from chat.storage import LocalStorageBackend, is_s3_storage
from core.exceptions import BaseApplicationError, ErrorCode
from core.services import ServiceResult

logger = logging.getLogger(__name__)


def error_response(message: str, error_code: str, status_code: int, **extra) -> Response:
    return Response(
        {"ok": False, "error": message, "error_code": error_code, **extra},
        status=status_code,
    )


def unauthorized_response() -> Response:
    return error_response(
        "Authentication required",
        ErrorCode.UNAUTHORIZED,
        status.HTTP_401_UNAUTHORIZED,
    )


def respond(result: ServiceResult, render=None) -> Response:
    """
    Turn a ServiceResult into the API envelope.

    render maps result.data to the success payload keys.
    """
    if not result:
        return Response(result.to_response(), status=result.status_code)
    body = {"ok": True}
    if render is not None:
        body.update(render(result.data))
    return Response(body)


def with_identities(messages) -> dict:
    """Serializer context with sender identities resolved in one round trip."""
    sender_ids = {message.sender_id for message in messages if message.sender_id}
    return {"identities": DirectoryService.resolve_many(sender_ids)}


def render_messages(messages) -> list:
    return MessageSerializer(messages, many=True, context=with_identities(messages)).data


# GET type -> (handler, query serializer)
GET_TYPES = {
    "threads": ("get_threads", None),
    "messages": ("get_messages", MessagesQuerySerializer),
    "threadInfo": ("get_thread_info", ThreadQuerySerializer),
    "search": ("get_search", SearchQuerySerializer),
    "presence": ("get_presence", PresenceQuerySerializer),
    "directory": ("get_directory", DirectoryQuerySerializer),
    "settings": ("get_settings", None),
    "quickReplies": ("get_quick_replies", None),
}

# POST action -> (handler, body serializer)
POST_ACTIONS = {
    "thread.openDirect": ("open_direct", OpenDirectSerializer),
    "thread.createGroup": ("create_group", CreateGroupSerializer),
    "thread.leave": ("leave_thread", ThreadQuerySerializer),
    "thread.mute": ("mute_thread", MuteSerializer),
    "thread.togglePinned": ("toggle_thread_pin", ThreadQuerySerializer),
    "thread.addMembers": ("add_members", AddMembersSerializer),
    "thread.removeMember": ("remove_member", MemberActionSerializer),
    "thread.setRole": ("set_role", SetRoleSerializer),
    "thread.deleteGroup": ("delete_group", ThreadQuerySerializer),
    "message.send": ("send_message", SendMessageSerializer),
    "message.edit": ("edit_message", EditMessageSerializer),
    "message.delete": ("delete_message", MessageActionSerializer),
    "message.deleteForMe": ("delete_message_for_me", MessageActionSerializer),
    "message.togglePinned": ("toggle_message_pin", MessageActionSerializer),
    "message.markRead": ("mark_read", MarkReadSerializer),
    "file.requestUpload": ("request_upload", RequestUploadSerializer),
    "file.refreshUploadUrl": ("refresh_upload", RefreshUploadSerializer),
    "file.getDownloadUrl": ("get_download_url", DownloadUrlSerializer),
    "user.blockToggle": ("toggle_block", UserActionSerializer),
    "user.report": ("report_user", ReportSerializer),
    "settings.update": ("update_settings", SettingsUpdateSerializer),
    "presence.update": ("update_presence", PresenceUpdateSerializer),
    "presence.heartbeat": ("heartbeat", None),
    "quickReply.create": ("create_quick_reply", QuickReplyCreateSerializer),
    "quickReply.update": ("update_quick_reply", QuickReplyUpdateSerializer),
    "quickReply.delete": ("delete_quick_reply", QuickReplyDeleteSerializer),
}


class MessagingView(APIView):
    """
    Single GET/POST surface of the messaging core.

    GET dispatches on the `type` query parameter, POST on the `action` body
    key. Every response carries `ok`.

    GET types:
        threads, messages, threadInfo, search, presence, directory,
        settings, quickReplies

    POST actions:
        thread.*, message.*, file.*, user.*, settings.update,
        presence.*, quickReply.* (see POST_ACTIONS)
    """

    permission_classes = [AllowAny]

    def handle_exception(self, exc):
        if isinstance(exc, (NotAuthenticated, AuthenticationFailed)):
            return unauthorized_response()
        return super().handle_exception(exc)

    def run_operation(self, request, name: str | None, table: dict, data) -> Response:
        if not request.user or not request.user.is_authenticated:
            return unauthorized_response()

        entry = table.get(name or "")
        if entry is None:
            return error_response(
                f"Unknown operation: {name}",
                ErrorCode.VALIDATION_ERROR,
                status.HTTP_400_BAD_REQUEST,
            )

        handler_name, serializer_class = entry
        params = {}
        if serializer_class is not None:
            serializer = serializer_class(data=data)
            if not serializer.is_valid():
                return error_response(
                    "Invalid request",
                    ErrorCode.VALIDATION_ERROR,
                    status.HTTP_400_BAD_REQUEST,
                    errors=serializer.errors,
                )
            params = dict(serializer.validated_data)

        return getattr(self, handler_name)(request.user, **params)

    @extend_schema(
        operation_id="messaging_query",
        summary="Query the messaging core",
        description=(
            "Read endpoint dispatched on `type`. Message pages advance the "
            "caller's read pointer to the newest row returned."
        ),
        parameters=[
            OpenApiParameter(
                name="type",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description="One of: " + ", ".join(GET_TYPES),
                required=True,
            ),
            OpenApiParameter(
                name="threadId",
                type=OpenApiTypes.UUID,
                location=OpenApiParameter.QUERY,
                description="Thread for messages, threadInfo and search",
                required=False,
            ),
            OpenApiParameter(
                name="cursor",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description="next_cursor of the previous messages page",
                required=False,
            ),
            OpenApiParameter(
                name="limit",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                description="Messages page size (default 40, max 80)",
                required=False,
            ),
            OpenApiParameter(
                name="q",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description="Search or directory query",
                required=False,
            ),
            OpenApiParameter(
                name="userId",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.QUERY,
                description="User for presence",
                required=False,
            ),
        ],
        responses={
            200: OpenApiResponse(description="{ok: true, ...}"),
            400: OpenApiResponse(description="Unknown type or invalid parameters"),
            401: OpenApiResponse(description="Not authenticated"),
            404: OpenApiResponse(description="Thread not found or not visible"),
        },
        tags=["Chat - Messaging"],
    )
    def get(self, request):
        return self.run_operation(
            request, request.query_params.get("type"), GET_TYPES, request.query_params
        )

    @extend_schema(
        operation_id="messaging_command",
        summary="Mutate the messaging core",
        description="Write endpoint dispatched on the body's `action` key.",
        request=OpenApiTypes.OBJECT,
        responses={
            200: OpenApiResponse(description="{ok: true, ...}"),
            400: OpenApiResponse(description="Validation error"),
            401: OpenApiResponse(description="Not authenticated"),
            403: OpenApiResponse(description="Forbidden, blocked or not accepting"),
            404: OpenApiResponse(description="Not found or not visible"),
            413: OpenApiResponse(description="Attachment too large"),
            502: OpenApiResponse(description="Storage failure (retryable)"),
        },
        tags=["Chat - Messaging"],
    )
    def post(self, request):
        data = request.data if isinstance(request.data, Mapping) else {}
        return self.run_operation(request, data.get("action"), POST_ACTIONS, data)

    # -------------------------------------------------------------------------
    # GET handlers
    # -------------------------------------------------------------------------

    def get_threads(self, user):
        return respond(
            ThreadService.list_for_user(user),
            lambda summaries: {"threads": ThreadSummarySerializer(summaries, many=True).data},
        )

    def get_messages(self, user, thread_id, cursor=None, limit=None):
        result = MessageService.fetch_page(
            user, thread_id, cursor=cursor or None, limit=limit, advance_read=True
        )
        return respond(
            result,
            lambda page: {
                "messages": render_messages(page.messages),
                "next_cursor": page.next_cursor,
            },
        )

    def get_thread_info(self, user, thread_id):
        def render(info):
            return {
                "thread": ThreadSerializer(info.thread).data,
                "members": ThreadMemberSerializer(
                    info.members, many=True, context={"identities": info.identities}
                ).data,
                "attachments": AttachmentSerializer(info.recent_attachments, many=True).data,
                "pinned_messages": render_messages(info.pinned_messages),
            }

        return respond(ThreadService.thread_info(user, thread_id), render)

    def get_search(self, user, thread_id, query=""):
        return respond(
            MessageService.search(user, thread_id, query),
            lambda messages: {"messages": render_messages(messages)},
        )

    def get_presence(self, user, user_id):
        return respond(
            PresenceService.get_presence(user, user_id),
            lambda presence: {"presence": PresenceSerializer(presence).data},
        )

    def get_directory(self, user, query="", include_patients=False):
        return respond(
            DirectoryService.search(user, query, include_patients=include_patients),
            lambda entries: {"users": [entry.to_dict() for entry in entries]},
        )

    def get_settings(self, user):
        return respond(
            ChatSettingsService.get(user),
            lambda chat_settings: {"settings": ChatSettingsSerializer(chat_settings).data},
        )

    def get_quick_replies(self, user):
        return respond(
            QuickReplyService.list_for_user(user),
            lambda replies: {"quick_replies": QuickReplySerializer(replies, many=True).data},
        )

    # -------------------------------------------------------------------------
    # POST handlers: threads
    # -------------------------------------------------------------------------

    def open_direct(self, user, other_user_id):
        return respond(
            ThreadService.open_direct(user, other_user_id),
            lambda thread: {"thread": ThreadSerializer(thread).data},
        )

    def create_group(self, user, title, member_ids):
        return respond(
            ThreadService.create_group(user, title, member_ids),
            lambda thread: {"thread": ThreadSerializer(thread).data},
        )

    def leave_thread(self, user, thread_id):
        return respond(MembershipService.leave(user, thread_id))

    def mute_thread(self, user, thread_id, muted=True, until=None, duration=None):
        return respond(
            ThreadService.mute(user, thread_id, muted=muted, until=until, duration=duration),
            lambda member: {"member": ThreadMemberSerializer(member).data},
        )

    def toggle_thread_pin(self, user, thread_id):
        return respond(
            ThreadService.toggle_pinned(user, thread_id),
            lambda is_pinned: {"is_pinned": is_pinned},
        )

    def add_members(self, user, thread_id, member_ids):
        return respond(
            MembershipService.add_members(user, thread_id, member_ids),
            lambda members: {"members": ThreadMemberSerializer(members, many=True).data},
        )

    def remove_member(self, user, thread_id, target_user_id):
        return respond(MembershipService.remove_member(user, thread_id, target_user_id))

    def set_role(self, user, thread_id, target_user_id, role):
        return respond(
            MembershipService.set_role(user, thread_id, target_user_id, role),
            lambda member: {"member": ThreadMemberSerializer(member).data},
        )

    def delete_group(self, user, thread_id):
        return respond(ThreadService.delete_group(user, thread_id))

    # -------------------------------------------------------------------------
    # POST handlers: messages
    # -------------------------------------------------------------------------

    def send_message(self, user, thread_id, content=None, attachments=None, reply_to_id=None):
        result = MessageService.send(
            user,
            thread_id,
            content=content,
            attachments=[dict(spec) for spec in attachments or []],
            reply_to_id=reply_to_id,
        )
        return respond(
            result,
            lambda sent: {
                "message": MessageSerializer(sent.message).data,
                "uploads": sent.uploads,
            },
        )

    def edit_message(self, user, message_id, content):
        return respond(
            MessageService.edit(user, message_id, content),
            lambda message: {"message": MessageSerializer(message).data},
        )

    def delete_message(self, user, message_id):
        return respond(
            MessageService.delete(user, message_id),
            lambda message: {"message": MessageSerializer(message).data},
        )

    def delete_message_for_me(self, user, message_id):
        return respond(MessageService.delete_for_me(user, message_id))

    def toggle_message_pin(self, user, message_id):
        return respond(
            MessageService.toggle_pinned(user, message_id),
            lambda is_pinned: {"is_pinned": is_pinned},
        )

    def mark_read(self, user, thread_id, message_id):
        return respond(
            MessageService.mark_read(user, thread_id, message_id),
            lambda member: {"member": ThreadMemberSerializer(member).data},
        )

    # -------------------------------------------------------------------------
    # POST handlers: files
    # -------------------------------------------------------------------------

    def request_upload(self, user, message_id, file_name, file_type="", file_size=None):
        return respond(
            AttachmentService.request_upload(
                user, message_id, file_name, file_type=file_type, file_size=file_size
            ),
            lambda grant: {"upload": grant},
        )

    def refresh_upload(self, user, attachment_id):
        return respond(
            AttachmentService.refresh_upload(user, attachment_id),
            lambda grant: {"upload": grant},
        )

    def get_download_url(self, user, storage_path):
        return respond(AttachmentService.request_download(user, storage_path), dict)

    # -------------------------------------------------------------------------
    # POST handlers: users, settings, presence, quick replies
    # -------------------------------------------------------------------------

    def toggle_block(self, user, target_user_id):
        return respond(
            BlockService.toggle(user, target_user_id),
            lambda is_blocked: {"is_blocked": is_blocked},
        )

    def report_user(self, user, target_user_id, message_id=None, reason=""):
        return respond(
            ReportService.report(user, target_user_id, message_id=message_id, reason=reason),
            lambda report: {"report_id": report.pk},
        )

    def update_settings(self, user, **changes):
        return respond(
            ChatSettingsService.update(user, **changes),
            lambda chat_settings: {"settings": ChatSettingsSerializer(chat_settings).data},
        )

    def update_presence(self, user, status=None, status_message=""):
        return respond(
            PresenceService.set_presence(user, status=status, status_message=status_message),
            lambda presence: {"presence": PresenceSerializer(presence).data},
        )

    def heartbeat(self, user):
        return respond(
            PresenceService.heartbeat(user),
            lambda presence: {"presence": PresenceSerializer(presence).data},
        )

    def create_quick_reply(self, user, title, content, category="", shortcut=""):
        return respond(
            QuickReplyService.create(user, title, content, category=category, shortcut=shortcut),
            lambda reply: {"quick_reply": QuickReplySerializer(reply).data},
        )

    def update_quick_reply(self, user, quick_reply_id, **changes):
        return respond(
            QuickReplyService.update(user, quick_reply_id, **changes),
            lambda reply: {"quick_reply": QuickReplySerializer(reply).data},
        )

    def delete_quick_reply(self, user, quick_reply_id):
        return respond(QuickReplyService.delete(user, quick_reply_id))


class LocalStorageView(APIView):
    """
    Byte transfer for LocalStorageBackend grants.

    PUT stores the request body, GET streams the stored file. Both require
    the grant token issued for exactly this path and method. Unavailable
    when S3 storage is configured.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def check_grant(self, request, storage_path: str, operation: str) -> Response | None:
        if is_s3_storage():
            return error_response("Not found", ErrorCode.NOT_FOUND, status.HTTP_404_NOT_FOUND)
        try:
            LocalStorageBackend().verify(
                request.query_params.get("token", ""), storage_path, operation
            )
        except BaseApplicationError as e:
            logger.warning(f"Rejected storage {operation} for {storage_path}: {e}")
            return Response(e.to_dict(), status=e.status_code)
        return None

    @extend_schema(
        operation_id="storage_upload",
        summary="Upload attachment bytes",
        request=OpenApiTypes.BINARY,
        responses={
            200: OpenApiResponse(description="Stored"),
            404: OpenApiResponse(description="Invalid grant"),
            410: OpenApiResponse(description="Grant expired"),
            413: OpenApiResponse(description="Body exceeds 15 MB"),
        },
        tags=["Chat - Storage"],
    )
    def put(self, request, storage_path: str):
        rejected = self.check_grant(request, storage_path, "PUT")
        if rejected is not None:
            return rejected

        body = request.body
        if len(body) > ATTACHMENT_CONFIG.MAX_FILE_SIZE_BYTES:
            return error_response(
                "Attachment too large",
                ErrorCode.PAYLOAD_TOO_LARGE,
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )

        LocalStorageBackend().save(storage_path, ContentFile(body))
        Attachment.objects.filter(
            storage_path=storage_path,
            upload_status=UploadStatus.PENDING,
        ).update(upload_status=UploadStatus.UPLOADED, uploaded_at=timezone.now())
        return Response({"ok": True})

    @extend_schema(
        operation_id="storage_download",
        summary="Download attachment bytes",
        responses={
            200: OpenApiResponse(description="File contents"),
            404: OpenApiResponse(description="Invalid grant or missing file"),
            410: OpenApiResponse(description="Grant expired"),
        },
        tags=["Chat - Storage"],
    )
    def get(self, request, storage_path: str):
        rejected = self.check_grant(request, storage_path, "GET")
        if rejected is not None:
            return rejected

        backend = LocalStorageBackend()
        if not backend.exists(storage_path):
            return error_response("Not found", ErrorCode.NOT_FOUND, status.HTTP_404_NOT_FOUND)
        return FileResponse(backend.open(storage_path))
