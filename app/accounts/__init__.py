"""
Accounts app: user identity and the directory resolver.

The messaging core never renders raw user rows. It asks DirectoryService for
a display identity (name, entity type, avatar) and for substring search over
the directory when a user starts a new conversation.
"""
