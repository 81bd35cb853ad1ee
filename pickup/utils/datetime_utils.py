"""
Datetime utility functions.
"""

from datetime import datetime
from typing import Optional

import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime column for API payloads."""
    return value.isoformat() if value else None
