from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # Naive UTC, matching what the DateTime columns round-trip.
    return datetime.now(timezone.utc).replace(tzinfo=None)
