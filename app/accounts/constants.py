"""
Constants for the directory resolver.

Import example:
    from accounts.constants import DIRECTORY_CONFIG
"""

from typing import Final


class DIRECTORY_CONFIG:
    """Configuration for directory lookups and search."""

    # Search
    SEARCH_LIMIT: Final[int] = 25
    SEARCHABLE_TYPES: Final[tuple] = (
        "doctor",
        "pharmacy",
        "laboratory",
        "clinic",
        "business",
        "admin",
    )

    # Fallback identity for users without a profile row
    DEFAULT_DISPLAY_NAME: Final[str] = "User"
    DEFAULT_ENTITY_TYPE: Final[str] = "business"

    # Cache
    CACHE_KEY_PREFIX: Final[str] = "directory:user"
    CACHE_TTL_SECONDS: Final[int] = 300
