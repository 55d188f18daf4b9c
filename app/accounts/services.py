"""
Directory resolver.

Maps user ids to display identities and searches the directory for people a
user may start a conversation with. Used by every chat read model that shows
a sender or member.

Caching:
    Identities are cached per user under "directory:user:<id>" for
    DIRECTORY_CONFIG.CACHE_TTL_SECONDS. Profile saves evict the entry
    (see signals.py). The cache is advisory: a miss simply reads the DB.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Iterable

from django.core.cache import cache

from accounts.constants import DIRECTORY_CONFIG
from accounts.models import EntityType, Profile
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from accounts.models import User


@dataclass(frozen=True)
class DirectoryEntry:
    """Display identity of a user."""

    id: int
    display_name: str
    entity_type: str
    avatar_url: str | None = None

    @classmethod
    def from_profile(cls, profile: Profile) -> "DirectoryEntry":
        return cls(
            id=profile.user_id,
            display_name=profile.display_name or DIRECTORY_CONFIG.DEFAULT_DISPLAY_NAME,
            entity_type=profile.entity_type or DIRECTORY_CONFIG.DEFAULT_ENTITY_TYPE,
            avatar_url=profile.avatar_url or None,
        )

    @classmethod
    def unknown(cls, user_id: int) -> "DirectoryEntry":
        return cls(
            id=user_id,
            display_name=DIRECTORY_CONFIG.DEFAULT_DISPLAY_NAME,
            entity_type=DIRECTORY_CONFIG.DEFAULT_ENTITY_TYPE,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class DirectoryService(BaseService):
    """Resolve and search display identities."""

    @classmethod
    def _cache_key(cls, user_id: int) -> str:
        return f"{DIRECTORY_CONFIG.CACHE_KEY_PREFIX}:{user_id}"

    @classmethod
    def resolve(cls, user_id: int) -> DirectoryEntry:
        """
        Resolve a single user id.

        Never fails: users without a profile get the default identity
        ("User", business).
        """
        return cls.resolve_many([user_id])[int(user_id)]

    @classmethod
    def resolve_many(cls, user_ids: Iterable[int]) -> dict[int, DirectoryEntry]:
        """
        Resolve several user ids with one cache round trip and at most one query.

        Returns:
            Dict keyed by integer user id, containing every requested id
        """
        ids = list(dict.fromkeys(int(user_id) for user_id in user_ids if user_id is not None))
        if not ids:
            return {}

        keys = {user_id: cls._cache_key(user_id) for user_id in ids}
        cached = cache.get_many(list(keys.values()))

        resolved: dict[int, DirectoryEntry] = {}
        missing: list[int] = []
        for user_id in ids:
            data = cached.get(keys[user_id])
            if data:
                resolved[user_id] = DirectoryEntry(**data)
            else:
                missing.append(user_id)

        if missing:
            found = {
                profile.user_id: DirectoryEntry.from_profile(profile)
                for profile in Profile.objects.filter(user_id__in=missing)
            }
            if found:
                cache.set_many(
                    {keys[user_id]: entry.to_dict() for user_id, entry in found.items()},
                    timeout=DIRECTORY_CONFIG.CACHE_TTL_SECONDS,
                )
            for user_id in missing:
                resolved[user_id] = found.get(user_id) or DirectoryEntry.unknown(user_id)

        return resolved

    @classmethod
    def invalidate(cls, user_id: int) -> None:
        cache.delete(cls._cache_key(user_id))

    @classmethod
    def search(
        cls,
        caller: "User",
        query: str | None,
        include_patients: bool = False,
    ) -> ServiceResult[list[DirectoryEntry]]:
        """
        Search the directory by case-insensitive substring.

        Excludes the caller and inactive accounts, and only returns
        searchable entity types (patients only when include_patients).
        A blank query lists the first matches alphabetically.

        Returns:
            ServiceResult with up to DIRECTORY_CONFIG.SEARCH_LIMIT entries
        """
        allowed = list(DIRECTORY_CONFIG.SEARCHABLE_TYPES)
        if include_patients:
            allowed.append(EntityType.PATIENT)

        profiles = (
            Profile.objects.filter(
                entity_type__in=allowed,
                user__is_active=True,
            )
            .exclude(user_id=caller.pk)
        )

        term = (query or "").strip().lower()
        if term:
            profiles = profiles.filter(search_text__icontains=term)

        entries = [
            DirectoryEntry.from_profile(profile)
            for profile in profiles.order_by("display_name", "user_id")[
                : DIRECTORY_CONFIG.SEARCH_LIMIT
            ]
        ]
        return ServiceResult.success(entries)
