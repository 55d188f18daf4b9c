"""
Chat application configuration.

This app provides the messaging core with:
- Direct (1:1) and group threads
- Role-based group management (owner, admin, member)
- Ordered message log with soft deletion and per-user hides
- Attachments behind signed storage grants
- Presence, typing and read receipts over WebSockets
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
