"""
Role predicates for thread membership management.

Every authorization decision about group roles goes through the functions in
this module so that the rules live in one place.

Permission Hierarchy:
    OWNER > ADMIN > MEMBER

    OWNER can:
        - All ADMIN permissions
        - Delete the group
        - Promote/demote admins

    ADMIN can:
        - All MEMBER permissions
        - Add members
        - Remove and promote plain members

    MEMBER can:
        - Send and read messages
        - Leave the group

Design Decisions:
    - Predicates take role strings, not model instances
    - The owner can never be removed or demoted
    - Nobody manages themselves through these paths (use leave)
"""

from __future__ import annotations

from chat.models import MemberRole


def can_manage_members(role: str | None) -> bool:
    """Whether the role may add or remove members."""
    return role in (MemberRole.OWNER, MemberRole.ADMIN)


def can_delete_group(role: str | None) -> bool:
    """Only the owner may delete a group."""
    return role == MemberRole.OWNER


def can_remove_member(actor_role: str | None, target_role: str | None) -> bool:
    """
    Whether actor may remove a member holding target_role.

    Owners remove anyone but themselves; admins remove plain members only.
    """
    if not can_manage_members(actor_role) or target_role == MemberRole.OWNER:
        return False
    if actor_role == MemberRole.OWNER:
        return True
    return target_role == MemberRole.MEMBER


def can_change_role(
    actor_role: str | None,
    target_role: str | None,
    new_role: str | None,
) -> bool:
    """
    Whether actor may move a member from target_role to new_role.

    Rules:
        - The owner role is never granted or taken here
        - Only the owner changes an admin's role
        - Admins may promote plain members to admin
    """
    if new_role not in (MemberRole.ADMIN, MemberRole.MEMBER):
        return False
    if target_role == MemberRole.OWNER or not can_manage_members(actor_role):
        return False
    if actor_role == MemberRole.OWNER:
        return True
    return target_role == MemberRole.MEMBER and new_role == MemberRole.ADMIN
