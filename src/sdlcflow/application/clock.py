"""Time helpers shared by the application services."""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    return moment.isoformat()


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


def seconds_between(start: str, end: datetime) -> float:
    """Elapsed seconds from an ISO timestamp to ``end``."""
    return (end - parse_iso(start)).total_seconds()
