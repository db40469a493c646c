"""Wall-clock access for code that must be testable against a fixed time."""

from collections.abc import Callable
from datetime import UTC, datetime

# Returns the current time as an aware UTC datetime
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
