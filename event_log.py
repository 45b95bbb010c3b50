from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from schemas import LogEntry


class EventLog:
    """Newest-first ring buffer of admin-visible events."""

    def __init__(self, capacity: int = 50, clock: Optional[Callable[[], datetime]] = None):
        self._entries: deque = deque(maxlen=capacity)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def append(self, type_: str, message: str, data: Optional[Dict[str, Any]] = None) -> LogEntry:
        entry = LogEntry(type=type_, message=message, data=dict(data or {}), timestamp=self._clock())
        self._entries.appendleft(entry)
        return entry

    def recent(self, limit: int = 10) -> List[LogEntry]:
        if limit <= 0:
            return []
        return list(self._entries)[:limit]

    def last_activity(self) -> Optional[datetime]:
        return self._entries[0].timestamp if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)
