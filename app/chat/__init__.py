"""
Chat app: the care messaging core.

This app handles:
- Threads (direct and group) and their membership
- The per-thread message log
- Attachment metadata and signed storage grants
- Presence and typing signals
- Real-time fan-out over Django Channels
- A client-side reconciliation layer (chat.client, chat.reconciliation)

Related apps:
    - accounts: User model and the directory of display identities

WebSocket Support:
    See consumers.py for the ThreadConsumer.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ThreadService, MessageService

    thread = ThreadService.open_direct(user, other_user_id=other.pk).data
    result = MessageService.send(user, thread.id, content="Hello!")
"""
