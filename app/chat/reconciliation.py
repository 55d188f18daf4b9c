"""
Client-side reconciliation of a thread's timeline.

ThreadTimeline merges three sources into one ordered list:
    - pages fetched over HTTP (load_older)
    - optimistic placeholders for messages being sent (send/retry)
    - real-time events from the thread's socket (handle_event)

Rules:
    - Persisted entries are unique by id and ordered by (created_at, id)
    - An update replaces a row only when its updated_at is newer
    - Rows hidden for the user never reappear
    - Read pointers only move forward (by read_at)
    - Placeholders ("temp-<ms>") sit after persisted rows until the server
      confirms them; a confirmed placeholder is replaced by the persisted
      row, or dropped if that row already arrived in real time
    - After close(), late responses and events are discarded

Delivery is at least once and may be reordered, so every merge is
idempotent.

Usage:
    timeline = ThreadTimeline(client, thread_id, user_id=me.pk)
    await timeline.load_older()
    await timeline.focus()
    entry = await timeline.send("Hello")
    await timeline.handle_event({"type": "message.created", "payload": {...}})
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from chat.constants import ATTACHMENT_CONFIG, REALTIME_CONFIG, TYPING_CONFIG
from core.exceptions import (
    BaseApplicationError,
    PayloadTooLargeError,
    UpstreamFailureError,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# =============================================================================
# Entries
# =============================================================================


class DeliveryStatus(str, Enum):
    SENDING = "sending"
    FAILED = "failed"


@dataclass(frozen=True)
class OutgoingFile:
    """Bytes the user attached to a message being sent."""

    file_name: str
    data: bytes
    file_type: str = ""

    @property
    def file_size(self) -> int:
        return len(self.data)

    def to_spec(self) -> dict:
        return {"fileName": self.file_name, "fileType": self.file_type, "fileSize": self.file_size}


@dataclass(frozen=True)
class OutgoingPayload:
    """Exactly what was submitted; retry() re-sends it unchanged."""

    content: str | None = None
    files: tuple[OutgoingFile, ...] = ()
    reply_to_message_id: str | None = None


@dataclass
class LocalMessage:
    """Optimistic placeholder for a message the server has not confirmed."""

    temp_id: str
    payload: OutgoingPayload
    status: DeliveryStatus = DeliveryStatus.SENDING
    error: str | None = None
    error_code: str | None = None

    @property
    def retryable(self) -> bool:
        return self.status == DeliveryStatus.FAILED


@dataclass
class PersistedMessage:
    """
    A message row confirmed by the server.

    pending_uploads holds attachment bytes whose upload failed, keyed by
    attachment id, until retry_uploads() succeeds.
    """

    row: dict
    pending_uploads: dict[str, OutgoingFile] = field(default_factory=dict)
    upload_error: str | None = None

    @property
    def id(self) -> str:
        return str(self.row["id"])

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.row["created_at"])

    @property
    def updated_at(self) -> datetime | None:
        return parse_timestamp(self.row.get("updated_at"))

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)


# =============================================================================
# Typing
# =============================================================================


class TypingTracker:
    """
    Who is typing, with receiver-side expiry.

    A typing state lapses TYPING_CONFIG.TIMEOUT_SECONDS after the last
    "is_typing: true" for that user unless renewed. clock is injectable for
    tests and defaults to time.monotonic.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = TYPING_CONFIG.TIMEOUT_SECONDS,
    ) -> None:
        self.clock = clock
        self.timeout = timeout
        self._expires_at: dict[int, float] = {}

    def update(self, user_id: int, is_typing: bool) -> None:
        if is_typing:
            self._expires_at[user_id] = self.clock() + self.timeout
        else:
            self._expires_at.pop(user_id, None)

    def active(self) -> list[int]:
        """User ids currently typing, after dropping lapsed states."""
        now = self.clock()
        self._expires_at = {uid: exp for uid, exp in self._expires_at.items() if exp > now}
        return sorted(self._expires_at)

    def clear(self) -> None:
        self._expires_at.clear()


# =============================================================================
# Timeline
# =============================================================================


class ThreadTimeline:
    """
    Reconciled view of one thread for one user.

    Args:
        client: MessagingClient (or any object with the same coroutine
            methods: fetch_messages, send_message, mark_read,
            refresh_upload, upload_bytes)
        thread_id: Thread this timeline shows
        user_id: The viewing user
        clock: Wall clock in seconds, used for temp ids and typing expiry
    """

    def __init__(
        self,
        client,
        thread_id,
        user_id: int,
        clock: Callable[[], float] = time.time,
        typing_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.thread_id = str(thread_id)
        self.user_id = user_id
        self.clock = clock

        self._persisted: dict[str, PersistedMessage] = {}
        self._locals: list[LocalMessage] = []
        self._hidden: set[str] = set()

        self.next_cursor: str | None = None
        self.has_more = True
        self.focused = False
        self.closed = False
        self.read_pointers: dict[int, str] = {}
        self._read_at: dict[int, datetime] = {}
        self.typing = TypingTracker(clock=typing_clock)
        self._last_marked_read: str | None = None

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def entries(self) -> list[PersistedMessage | LocalMessage]:
        """Persisted rows in (created_at, id) order, then placeholders."""
        persisted = sorted(self._persisted.values(), key=lambda entry: entry.sort_key)
        return [*persisted, *self._locals]

    @property
    def persisted(self) -> list[PersistedMessage]:
        return sorted(self._persisted.values(), key=lambda entry: entry.sort_key)

    def get(self, message_id: str) -> PersistedMessage | None:
        return self._persisted.get(str(message_id))

    def get_local(self, temp_id: str) -> LocalMessage | None:
        return next((entry for entry in self._locals if entry.temp_id == temp_id), None)

    def typing_users(self) -> list[int]:
        return self.typing.active()

    # -------------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------------

    def merge_row(self, row: dict) -> PersistedMessage | None:
        """
        Insert or update a persisted row.

        Returns the entry, or None when the row is hidden for this user or
        belongs to another thread.
        """
        message_id = str(row["id"])
        if message_id in self._hidden:
            return None
        if row.get("thread_id") is not None and str(row["thread_id"]) != self.thread_id:
            return None

        existing = self._persisted.get(message_id)
        if existing is None:
            entry = PersistedMessage(row=row)
            self._persisted[message_id] = entry
            return entry

        incoming = parse_timestamp(row.get("updated_at"))
        current = existing.updated_at
        if incoming is not None and (current is None or incoming > current):
            existing.row = row
        return existing

    def hide(self, message_id: str) -> None:
        message_id = str(message_id)
        self._hidden.add(message_id)
        self._persisted.pop(message_id, None)

    def advance_read_pointer(
        self, user_id: int, message_id: str, read_at: datetime | None
    ) -> bool:
        """
        Move another member's read pointer forward.

        Events whose read_at is not newer than the last applied one are
        ignored, so a late receipt never moves a pointer backwards.
        """
        current = self._read_at.get(user_id)
        if current is not None and (read_at is None or read_at <= current):
            return False
        self.read_pointers[user_id] = message_id
        if read_at is not None:
            self._read_at[user_id] = read_at
        return True

    def apply_event(self, event: str, payload: dict) -> bool:
        """
        Apply one real-time event. Returns True when state changed.

        Unknown events are ignored.
        """
        if event in (REALTIME_CONFIG.EVENT_MESSAGE_CREATED, REALTIME_CONFIG.EVENT_MESSAGE_UPDATED):
            row = payload["message"]
            before = self._persisted.get(str(row["id"]))
            before_row = before.row if before else None
            entry = self.merge_row(row)
            return entry is not None and (before is None or entry.row is not before_row)

        if event == REALTIME_CONFIG.EVENT_MESSAGE_HIDDEN:
            if payload.get("user_id") != self.user_id:
                return False
            self.hide(payload["message_id"])
            return True

        if event == REALTIME_CONFIG.EVENT_READ_UPDATED:
            return self.advance_read_pointer(
                payload["user_id"],
                str(payload["message_id"]),
                parse_timestamp(payload.get("read_at")),
            )

        if event == REALTIME_CONFIG.EVENT_TYPING:
            if payload.get("user_id") == self.user_id:
                return False
            self.typing.update(payload["user_id"], bool(payload.get("is_typing")))
            return True

        return False

    async def handle_event(self, frame: dict) -> bool:
        """
        Apply a socket frame {"type": <event>, "payload": {...}}.

        While focused, a newly created message moves the read pointer.
        """
        if self.closed:
            return False
        event = frame.get("type")
        changed = self.apply_event(event, frame.get("payload") or {})
        if changed and self.focused and event == REALTIME_CONFIG.EVENT_MESSAGE_CREATED:
            await self.mark_newest_read()
        return changed

    # -------------------------------------------------------------------------
    # Paging and read state
    # -------------------------------------------------------------------------

    async def load_older(self) -> list[PersistedMessage]:
        """
        Fetch the page before the oldest loaded one (the newest page first).

        Returns the entries added, oldest first.
        """
        if self.closed or not self.has_more:
            return []

        body = await self.client.fetch_messages(self.thread_id, cursor=self.next_cursor)
        if self.closed:
            return []

        added = []
        for row in body.get("messages", []):
            is_new = str(row["id"]) not in self._persisted
            entry = self.merge_row(row)
            if entry is not None and is_new:
                added.append(entry)

        self.next_cursor = body.get("next_cursor")
        self.has_more = self.next_cursor is not None
        return added

    async def focus(self) -> None:
        self.focused = True
        await self.mark_newest_read()

    def blur(self) -> None:
        self.focused = False

    async def mark_newest_read(self) -> str | None:
        """Advance the server-side read pointer to the newest visible row."""
        persisted = self.persisted
        if self.closed or not persisted:
            return None

        newest = persisted[-1]
        if newest.id == self._last_marked_read:
            return newest.id

        try:
            await self.client.mark_read(self.thread_id, newest.id)
        except BaseApplicationError as e:
            logger.warning(f"Could not mark {newest.id} read in thread {self.thread_id}: {e}")
            return None

        self._last_marked_read = newest.id
        return newest.id

    def close(self) -> None:
        """Stop processing. In-flight results that arrive later are dropped."""
        self.closed = True
        self.focused = False
        self.typing.clear()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def _next_temp_id(self) -> str:
        millis = int(self.clock() * 1000)
        taken = {entry.temp_id for entry in self._locals}
        while f"temp-{millis}" in taken:
            millis += 1
        return f"temp-{millis}"

    async def send(
        self,
        content: str | None = None,
        files: tuple[OutgoingFile, ...] | list[OutgoingFile] = (),
        reply_to_message_id: str | None = None,
    ) -> LocalMessage | PersistedMessage | None:
        """
        Send a message optimistically.

        A placeholder is inserted at once. On success it is replaced by the
        persisted row and the attachment bytes are uploaded; on failure it
        is marked FAILED and can be retried. When the server committed the
        row but could not sign upload grants, the row replaces the
        placeholder and its files wait for retry_uploads().

        Raises:
            PayloadTooLargeError: A file exceeds the attachment size limit
                (checked before anything is inserted)
        """
        for outgoing in files:
            if outgoing.file_size > ATTACHMENT_CONFIG.MAX_FILE_SIZE_BYTES:
                raise PayloadTooLargeError(f"{outgoing.file_name} is larger than 15 MB")

        content = content.strip() if content else None
        payload = OutgoingPayload(
            content=content or None,
            files=tuple(files),
            reply_to_message_id=reply_to_message_id,
        )
        return await self._submit(payload)

    async def retry(self, temp_id: str) -> LocalMessage | PersistedMessage | None:
        """
        Re-send a failed placeholder with its identical payload.

        Raises:
            KeyError: No failed placeholder with this temp id
        """
        local = self.get_local(temp_id)
        if local is None or not local.retryable:
            raise KeyError(temp_id)
        self._locals.remove(local)
        return await self._submit(local.payload)

    async def _submit(self, payload: OutgoingPayload) -> LocalMessage | PersistedMessage | None:
        local = LocalMessage(temp_id=self._next_temp_id(), payload=payload)
        self._locals.append(local)

        try:
            body = await self.client.send_message(
                self.thread_id,
                content=payload.content,
                attachments=[outgoing.to_spec() for outgoing in payload.files],
                reply_to_message_id=payload.reply_to_message_id,
            )
        except BaseApplicationError as e:
            if self.closed:
                return None
            if isinstance(e, UpstreamFailureError) and "message" in e.details:
                return self._keep_committed(local, e, payload.files)
            local.status = DeliveryStatus.FAILED
            local.error = e.message
            local.error_code = e.error_code
            logger.info(f"Send {local.temp_id} failed in thread {self.thread_id}: {e}")
            return local

        if self.closed:
            return None

        self._locals.remove(local)
        entry = self.merge_row(body["message"])
        if entry is None:
            return None

        await self._upload(entry, body.get("uploads", []), payload.files)
        return entry

    def _keep_committed(
        self,
        local: LocalMessage,
        error: BaseApplicationError,
        files: tuple[OutgoingFile, ...],
    ) -> PersistedMessage | None:
        """
        Replace a placeholder whose send failed after the row was committed.

        The files wait in pending_uploads for retry_uploads(); resending
        would duplicate the message.
        """
        self._locals.remove(local)
        entry = self.merge_row(error.details["message"])
        if entry is None:
            return None

        attachment_ids = error.details.get("attachment_ids", [])
        for attachment_id, outgoing in zip(attachment_ids, files):
            entry.pending_uploads[str(attachment_id)] = outgoing
        entry.upload_error = error.message
        logger.info(f"Send {local.temp_id} committed as {entry.id} without upload grants: {error}")
        return entry

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    async def _upload(
        self,
        entry: PersistedMessage,
        grants: list[dict],
        files: tuple[OutgoingFile, ...],
    ) -> None:
        for grant, outgoing in zip(grants, files):
            attachment_id = str(grant["attachment_id"])
            try:
                await self.client.upload_bytes(grant["signed_url"], outgoing.data, outgoing.file_type)
            except UpstreamFailureError as e:
                entry.pending_uploads[attachment_id] = outgoing
                entry.upload_error = e.message
                logger.warning(f"Upload of attachment {attachment_id} failed: {e}")
            else:
                entry.pending_uploads.pop(attachment_id, None)

    async def retry_uploads(self, message_id: str) -> int:
        """
        Retry failed uploads of a message with freshly signed grants.

        Returns the number of uploads still pending.
        """
        entry = self.get(message_id)
        if entry is None:
            return 0

        for attachment_id, outgoing in list(entry.pending_uploads.items()):
            try:
                grant = await self.client.refresh_upload(attachment_id)
            except BaseApplicationError as e:
                entry.upload_error = e.message
                logger.warning(f"Could not refresh upload grant {attachment_id}: {e}")
                continue
            await self._upload(entry, [grant], (outgoing,))

        if not entry.pending_uploads:
            entry.upload_error = None
        return len(entry.pending_uploads)
