"""
Async HTTP client for the messaging API.

Wraps the single GET/POST surface (see chat.views.MessagingView) and the
signed storage URLs. Used by chat.reconciliation.ThreadTimeline and by
service-to-service callers.

Errors:
    Failure envelopes are raised as core.exceptions instances rebuilt from
    their error_code (NotFoundError, BlockedError, ...). Network failures
    become UpstreamFailureError, which is retryable.

Usage:
    async with MessagingClient("https://api.example.com", token) as client:
        body = await client.send_message(thread_id, content="Hello")
        for grant, data in zip(body["uploads"], files):
            await client.upload_bytes(grant["signed_url"], data)
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from core.exceptions import (
    GrantExpiredError,
    UpstreamFailureError,
    exception_for_code,
)

logger = logging.getLogger(__name__)

DEFAULT_MESSAGING_PATH = "/api/v1/chat/messaging/"


def clean_params(params: dict[str, Any]) -> dict[str, Any]:
    """Drop None values and stringify UUIDs for the wire."""
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        cleaned[key] = str(value) if isinstance(value, uuid.UUID) else value
    return cleaned


class MessagingClient:
    """
    Client for the messaging GET/POST endpoint.

    Args:
        base_url: API origin, e.g. "https://api.example.com"
        token: JWT access token
        transport: Optional httpx transport (tests use httpx.MockTransport)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        messaging_path: str = DEFAULT_MESSAGING_PATH,
    ) -> None:
        self.messaging_path = messaging_path
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> MessagingClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self._http.send(request)
        except httpx.RequestError as exc:
            logger.warning(f"Messaging request to {request.url} failed: {exc}")
            raise UpstreamFailureError(f"Messaging service unavailable: {exc}") from exc

    @staticmethod
    def _raise_for_envelope(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamFailureError(
                f"Unexpected response from messaging service ({response.status_code})"
            ) from exc

        if response.status_code >= 400 or not body.get("ok", False):
            raise exception_for_code(
                body.get("error_code"),
                body.get("error") or f"Request failed ({response.status_code})",
                details=body.get("details") or body.get("errors"),
            )
        return body

    async def query(self, type_: str, **params) -> dict:
        """GET the messaging endpoint with ?type=type_."""
        request = self._http.build_request(
            "GET",
            self.messaging_path,
            params=clean_params({"type": type_, **params}),
        )
        return self._raise_for_envelope(await self._send(request))

    async def command(self, action: str, **payload) -> dict:
        """POST {action, **payload} to the messaging endpoint."""
        request = self._http.build_request(
            "POST",
            self.messaging_path,
            json=clean_params({"action": action, **payload}),
        )
        return self._raise_for_envelope(await self._send(request))

    async def upload_bytes(
        self,
        url: str,
        data: bytes,
        content_type: str | None = None,
    ) -> None:
        """
        PUT bytes to a signed upload URL.

        Absolute URLs (object storage) are sent without the API's
        Authorization header; the signature in the URL is the credential.

        Raises:
            GrantExpiredError: The grant expired; request a fresh one
            UpstreamFailureError: Storage rejected or could not be reached
        """
        headers = {"Content-Type": content_type} if content_type else {}
        request = self._http.build_request("PUT", url, content=data, headers=headers)
        if httpx.URL(url).is_absolute_url:
            request.headers.pop("Authorization", None)

        response = await self._send(request)
        if response.status_code == 410:
            raise GrantExpiredError("Upload grant has expired")
        if response.status_code >= 400:
            raise UpstreamFailureError(f"Upload failed ({response.status_code})")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_threads(self) -> list[dict]:
        return (await self.query("threads"))["threads"]

    async def fetch_messages(self, thread_id, cursor: str | None = None, limit: int | None = None) -> dict:
        """One page: {"messages": [...oldest first], "next_cursor": str | None}."""
        return await self.query("messages", threadId=thread_id, cursor=cursor, limit=limit)

    async def thread_info(self, thread_id) -> dict:
        return await self.query("threadInfo", threadId=thread_id)

    async def search(self, thread_id, q: str) -> list[dict]:
        return (await self.query("search", threadId=thread_id, q=q))["messages"]

    async def presence(self, user_id: int) -> dict:
        return (await self.query("presence", userId=user_id))["presence"]

    async def directory(self, q: str = "", include_patients: bool = False) -> list[dict]:
        body = await self.query("directory", q=q, includePatients=include_patients)
        return body["users"]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def open_direct(self, other_user_id: int) -> dict:
        return (await self.command("thread.openDirect", otherUserId=other_user_id))["thread"]

    async def create_group(self, title: str, member_ids: list[int]) -> dict:
        body = await self.command("thread.createGroup", title=title, memberIds=member_ids)
        return body["thread"]

    async def send_message(
        self,
        thread_id,
        content: str | None = None,
        attachments: list[dict] | None = None,
        reply_to_message_id=None,
    ) -> dict:
        """
        Send a message.

        attachments are {"fileName", "fileType", "fileSize"} dicts.

        Returns:
            {"message": row, "uploads": [grant, ...]} with one grant per
            attachment, in payload order
        """
        return await self.command(
            "message.send",
            threadId=thread_id,
            content=content,
            attachments=attachments or [],
            replyToMessageId=reply_to_message_id,
        )

    async def edit_message(self, message_id, content: str) -> dict:
        return (await self.command("message.edit", messageId=message_id, content=content))["message"]

    async def delete_message(self, message_id) -> dict:
        return (await self.command("message.delete", messageId=message_id))["message"]

    async def delete_for_me(self, message_id) -> None:
        await self.command("message.deleteForMe", messageId=message_id)

    async def mark_read(self, thread_id, message_id) -> None:
        await self.command("message.markRead", threadId=thread_id, messageId=message_id)

    async def refresh_upload(self, attachment_id) -> dict:
        """Fresh upload grant for a still-pending attachment."""
        return (await self.command("file.refreshUploadUrl", attachmentId=attachment_id))["upload"]

    async def download_url(self, storage_path: str) -> dict:
        return await self.command("file.getDownloadUrl", storagePath=storage_path)
