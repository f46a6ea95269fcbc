"""
Lootman configuration.

Usage in settings.py:
    LOOTMAN = {
        "DEFAULT_CHOICE_WINDOW_HOURS": 72,
        "MULTIPLIER_POLICY": "highest",
    }
"""

from dataclasses import dataclass
from typing import Any

from django.conf import settings


MULTIPLIER_POLICIES = ("latest", "highest")


@dataclass
class LootmanSettings:
    """Lootman configuration settings."""

    # Hours a pending choice stays claimable when the rule sets no window.
    # None means choices never expire.
    DEFAULT_CHOICE_WINDOW_HOURS: int | None = None

    # How a new multiplier interacts with an active one: "latest" or "highest"
    MULTIPLIER_POLICY: str = "latest"

    # Run the expiration sweep before listing pending choices
    EXPIRE_ON_READ: bool = True

    # Timezone for time-based conditions when the business has none
    DEFAULT_TIMEZONE: str = "America/New_York"

    REDEMPTION_CODE_LENGTH: int = 8

    # AwardGrant cleanup
    GRANT_CLEANUP_DAYS: int = 180


def get_lootman_settings() -> LootmanSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "LOOTMAN", {})
    return LootmanSettings(**user_settings)


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_lootman_settings(), name)


lootman_settings = _LazySettings()
