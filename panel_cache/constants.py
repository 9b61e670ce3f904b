"""
Panel Cache Global Constants

Centralized location for all system-wide constants used across the package.
"""

from datetime import datetime, timezone

# Key layout
KEY_SEPARATOR = ":"
DIGEST_LENGTH = 32
IDENTITY_SLUG_MAX_LENGTH = 64
MAX_PATTERN_LENGTH = 250

# Redis tag index segment
TAG_INDEX_SEGMENT = "tag"

# Warm result statuses
WARM_STATUS_WARMED = "warmed"
WARM_STATUS_ALREADY_CACHED = "already_cached"
WARM_STATUS_NOT_CACHED = "not_cached"
WARM_STATUS_ERROR = "error"


# Timestamp Functions
def get_current_timestamp() -> datetime:
    """Get current timestamp with UTC timezone.

    Returns:
        datetime: Current UTC timestamp

    Note: Use this function instead of a constant to get real-time timestamps.
    """
    return datetime.now(timezone.utc)


# Package Constants
APP_NAME = "Panel Cache"
APP_VERSION = "1.0.0"
