"""
Attachment Pipeline service.

Message creation is decoupled from byte transfer:
    1. Metadata rows are inserted with the message (upload_status=pending)
    2. The caller receives one signed upload grant per row and uploads the
       bytes directly to storage
    3. Downloads are served through short-lived signed grants

The core never checks synchronously that an upload happened. The periodic
reconcile_pending() pass marks rows uploaded when their bytes appear, or
orphaned once ORPHAN_GIVE_UP_HOURS have passed without them. Rows are never
deleted.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from chat.constants import ATTACHMENT_CONFIG
from chat.models import Attachment, Message, UploadStatus
from chat.services.access import get_member_message, parse_uuid
from chat.storage import StorageBackend, get_storage_backend
from core.exceptions import ErrorCode, UpstreamFailureError
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


def sanitize_file_name(file_name: str) -> str:
    """
    Make a file name safe to embed in a storage path.

    Runs of characters outside [A-Za-z0-9_.-] become "_". Empty results
    fall back to "file".
    """
    cleaned = ATTACHMENT_CONFIG.UNSAFE_FILE_NAME_PATTERN.sub("_", file_name or "")
    cleaned = cleaned.strip("._")[:120]
    return cleaned or "file"


def build_storage_path(message: Message, file_name: str) -> str:
    """{threadId}/{messageId}/{randomId}_{sanitizedFileName}"""
    return (
        f"{message.thread_id}/{message.id}/"
        f"{uuid.uuid4().hex}_{sanitize_file_name(file_name)}"
    )


class AttachmentService(BaseService):
    """
    Service for attachment metadata and signed grants.

    Methods:
        validate_specs: Check a send payload's attachment list
        create_rows: Insert pending rows for a new message
        issue_upload_grants: Sign one upload grant per row
        request_upload: Add an attachment to an existing message
        refresh_upload: Re-issue an upload grant for a pending row
        request_download: Sign a download grant for a storage path
        recent_for_thread: Latest attachments of live messages
        reconcile_pending: Mark pending rows uploaded or orphaned
    """

    @classmethod
    def get_backend(cls) -> StorageBackend:
        return get_storage_backend()

    @classmethod
    def validate_size(cls, file_size: int | None) -> ServiceResult | None:
        """PAYLOAD_TOO_LARGE failure when file_size exceeds 15 MB, else None."""
        if file_size is not None and file_size > ATTACHMENT_CONFIG.MAX_FILE_SIZE_BYTES:
            return ServiceResult.failure(
                f"Attachment exceeds the {ATTACHMENT_CONFIG.MAX_FILE_SIZE_BYTES} byte limit",
                error_code=ErrorCode.PAYLOAD_TOO_LARGE,
            )
        return None

    @classmethod
    def validate_specs(cls, specs: list[dict]) -> ServiceResult | None:
        """
        Validate {file_name, file_type, file_size} dicts from a send payload.

        Returns a failure for the first problem found, or None.
        """
        if len(specs) > ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE:
            return ServiceResult.failure(
                f"At most {ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE} attachments "
                "per message",
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        for spec in specs:
            validation = cls.validate_required(file_name=spec.get("file_name"))
            if validation is not None:
                return validation
            too_large = cls.validate_size(spec.get("file_size"))
            if too_large is not None:
                return too_large
        return None

    @classmethod
    def create_rows(cls, message: Message, specs: list[dict]) -> list[Attachment]:
        """Insert pending rows in payload order. Call within the send transaction."""
        return [
            Attachment.objects.create(
                message=message,
                file_name=spec["file_name"][: ATTACHMENT_CONFIG.MAX_FILE_NAME_LENGTH],
                file_type=spec.get("file_type") or "",
                file_size=spec.get("file_size"),
                storage_path=build_storage_path(message, spec["file_name"]),
            )
            for spec in specs
        ]

    @classmethod
    def upload_grant_for(cls, attachment: Attachment, backend: StorageBackend) -> dict:
        grant = backend.create_upload_grant(attachment.storage_path, attachment.file_type)
        return {
            "attachment_id": str(attachment.id),
            "storage_path": attachment.storage_path,
            "signed_url": grant.url,
            "token": grant.token,
            "expires_in_seconds": grant.expires_in_seconds,
        }

    @classmethod
    def issue_upload_grants(cls, attachments: list[Attachment]) -> list[dict]:
        """
        Sign one upload grant per attachment.

        Raises:
            UpstreamFailureError: If the storage backend cannot sign
        """
        if not attachments:
            return []
        backend = cls.get_backend()
        return [cls.upload_grant_for(attachment, backend) for attachment in attachments]

    @classmethod
    def request_upload(
        cls,
        user: User,
        message_id,
        file_name: str,
        file_type: str = "",
        file_size: int | None = None,
    ) -> ServiceResult[dict]:
        """
        Add an attachment to an existing message and return its upload grant.

        Only the message's sender may add attachments. Exactly 15 MB is
        accepted; one byte more is rejected.

        Returns:
            ServiceResult with {attachment_id, storage_path, signed_url,
            token, expires_in_seconds}

        Error codes:
            PAYLOAD_TOO_LARGE: file_size above the limit
            FORBIDDEN: Caller did not send the message
            NOT_FOUND: Message missing, deleted or not visible
            UPSTREAM_FAILURE: Grant could not be signed (row is kept)
        """
        too_large = cls.validate_size(file_size)
        if too_large is not None:
            return too_large
        validation = cls.validate_required(file_name=file_name)
        if validation is not None:
            return validation

        lookup = get_member_message(message_id, user)
        if not lookup:
            return lookup
        message, _member = lookup.data

        if message.sender_id != user.pk:
            return ServiceResult.failure(
                "Only the sender can attach files to this message",
                error_code=ErrorCode.FORBIDDEN,
            )
        if message.is_deleted:
            return ServiceResult.failure("Message not found", error_code=ErrorCode.NOT_FOUND)

        with cls.atomic():
            (attachment,) = cls.create_rows(
                message,
                [{"file_name": file_name, "file_type": file_type, "file_size": file_size}],
            )

        cls.get_logger().info(
            f"User {user.pk} requested upload {attachment.id} for message {message.id}"
        )

        try:
            (grant,) = cls.issue_upload_grants([attachment])
        except UpstreamFailureError as e:
            return cls.handle_exception(e, f"Signing upload for attachment {attachment.id}")
        return ServiceResult.success(grant)

    @classmethod
    def refresh_upload(cls, user: User, attachment_id) -> ServiceResult[dict]:
        """
        Re-issue the upload grant of a pending attachment.

        Used by clients whose original grant expired before the upload
        finished.
        """
        pk = parse_uuid(attachment_id)
        attachment = (
            Attachment.objects.select_related("message").filter(pk=pk).first() if pk else None
        )
        if attachment is None or attachment.message.sender_id != user.pk:
            return ServiceResult.failure("Attachment not found", error_code=ErrorCode.NOT_FOUND)
        if attachment.message.is_deleted:
            return ServiceResult.failure("Attachment not found", error_code=ErrorCode.NOT_FOUND)
        if attachment.upload_status != UploadStatus.PENDING:
            return ServiceResult.failure(
                "Attachment upload is no longer pending",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        try:
            (grant,) = cls.issue_upload_grants([attachment])
        except UpstreamFailureError as e:
            return cls.handle_exception(e, f"Refreshing upload for attachment {attachment.id}")
        return ServiceResult.success(grant)

    @classmethod
    def request_download(cls, user: User, storage_path: str) -> ServiceResult[dict]:
        """
        Sign a short-lived download grant for an attachment.

        The caller must be an active member of the owning thread, and the
        owning message must not be deleted.

        Returns:
            ServiceResult with {url, expires_in_seconds}
        """
        validation = cls.validate_required(storage_path=storage_path)
        if validation is not None:
            return validation

        attachment = (
            Attachment.objects.select_related("message", "message__thread")
            .filter(storage_path=storage_path)
            .first()
        )
        if attachment is None:
            return ServiceResult.failure("Attachment not found", error_code=ErrorCode.NOT_FOUND)

        message = attachment.message
        if (
            message.is_deleted
            or message.thread.is_deleted
            or message.thread.get_active_member(user.pk) is None
        ):
            return ServiceResult.failure("Attachment not found", error_code=ErrorCode.NOT_FOUND)

        try:
            grant = cls.get_backend().create_download_grant(storage_path)
        except UpstreamFailureError as e:
            return cls.handle_exception(e, f"Signing download for attachment {attachment.id}")

        return ServiceResult.success(
            {"url": grant.url, "expires_in_seconds": grant.expires_in_seconds}
        )

    @classmethod
    def recent_for_thread(cls, thread, limit: int) -> list[Attachment]:
        return list(
            Attachment.objects.filter(message__thread=thread, message__is_deleted=False)
            .order_by("-created_at")[:limit]
        )

    @classmethod
    def reconcile_pending(
        cls,
        now=None,
        backend: StorageBackend | None = None,
    ) -> dict[str, int]:
        """
        Resolve pending attachments older than the grace period.

        Rows whose bytes exist become UPLOADED. Rows still missing bytes
        after ORPHAN_GIVE_UP_HOURS become ORPHANED. Other rows stay pending
        for the next pass and move to the back of the queue. Storage errors
        leave the row pending.

        Returns:
            Counts keyed by "uploaded", "orphaned", "pending", "errors"
        """
        now = now or timezone.now()
        backend = backend or cls.get_backend()
        grace = getattr(
            settings, "CHAT_ORPHAN_GRACE_MINUTES", ATTACHMENT_CONFIG.ORPHAN_GRACE_MINUTES
        )
        give_up_before = now - timedelta(hours=ATTACHMENT_CONFIG.ORPHAN_GIVE_UP_HOURS)

        candidates = Attachment.objects.filter(
            upload_status=UploadStatus.PENDING,
            created_at__lte=now - timedelta(minutes=grace),
        ).order_by("updated_at", "created_at")[: ATTACHMENT_CONFIG.RECONCILE_BATCH_SIZE]

        counts = {"uploaded": 0, "orphaned": 0, "pending": 0, "errors": 0}
        for attachment in candidates:
            try:
                present = backend.exists(attachment.storage_path)
            except UpstreamFailureError:
                cls.get_logger().warning(
                    f"Could not check bytes for attachment {attachment.id}", exc_info=True
                )
                counts["errors"] += 1
                continue

            if present:
                attachment.upload_status = UploadStatus.UPLOADED
                attachment.uploaded_at = now
                attachment.save(update_fields=["upload_status", "uploaded_at", "updated_at"])
                counts["uploaded"] += 1
            elif attachment.created_at <= give_up_before:
                attachment.upload_status = UploadStatus.ORPHANED
                attachment.save(update_fields=["upload_status", "updated_at"])
                counts["orphaned"] += 1
            else:
                # Touch so the next batch starts with rows not yet checked
                attachment.save(update_fields=["updated_at"])
                counts["pending"] += 1

        cls.get_logger().info(f"Reconciled pending attachments: {counts}")
        return counts
