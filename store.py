"""In-memory message store.

One ordered list per section, arrival order. Each list is capped and trimmed
from the head once it grows past capacity, whatever the status of the evicted
messages. A pending message can therefore disappear before anyone moderates
it. The store has no locking and no side effects; ``moderation`` serializes
access and turns mutations into log entries and broadcasts.
"""

import time
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from errors import InvalidInput, UnknownSection
from schemas import Message, MessageStatus
from sections import SectionRegistry


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class MonotonicIds:
    """Millisecond-timestamp ids that never repeat within the process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            candidate = int(self._clock() * 1000)
            self._last = max(candidate, self._last + 1)
            return self._last


class MessageStore:
    def __init__(
        self,
        registry: SectionRegistry,
        capacity: int = 50,
        text_max_length: int = 280,
        author_max_length: int = 50,
        default_author: str = "Anonim",
        id_factory: Optional[Callable[[], int]] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.registry = registry
        self.capacity = capacity
        self.text_max_length = text_max_length
        self.author_max_length = author_max_length
        self.default_author = default_author
        self._next_id = id_factory or MonotonicIds()
        self._clock = clock
        self._sections: Dict[str, List[Message]] = {key: [] for key in registry}

    def _section(self, section: str) -> List[Message]:
        if section not in self.registry:
            raise UnknownSection(section)
        return self._sections[section]

    def _index(self, section: str, message_id: int) -> int:
        for i, msg in enumerate(self._section(section)):
            if msg.id == message_id:
                return i
        return -1

    def append(self, section: str, text, author=None) -> Message:
        messages = self._section(section)
        if not isinstance(text, str) or not text:
            raise InvalidInput("Message text is required")
        if not isinstance(author, str) or not author.strip():
            author = self.default_author
        message = Message(
            id=self._next_id(),
            text=text[:self.text_max_length],
            author=author[:self.author_max_length],
            timestamp=self._clock(),
            status=MessageStatus.pending,
        )
        messages.append(message)
        if len(messages) > self.capacity:
            del messages[:len(messages) - self.capacity]
        return message

    def find(self, section: str, message_id: int) -> Optional[Message]:
        i = self._index(section, message_id)
        return self._sections[section][i] if i >= 0 else None

    def remove(self, section: str, message_id: int) -> Optional[Message]:
        i = self._index(section, message_id)
        if i < 0:
            return None
        return self._sections[section].pop(i)

    def set_status(self, section: str, message_id: int, status: MessageStatus) -> Optional[Message]:
        message = self.find(section, message_id)
        if message is not None:
            message.status = MessageStatus(status)
        return message

    def all_messages(self) -> List[Tuple[str, Message]]:
        return [
            (section, msg)
            for section in self.registry
            for msg in self._sections[section]
        ]

    def snapshot(self) -> Dict[str, List[dict]]:
        return {
            section: [msg.to_wire() for msg in self._sections[section]]
            for section in self.registry
        }

    def counts(self) -> Dict[str, int]:
        return {section: len(self._sections[section]) for section in self.registry}

    def clear_section(self, section: str) -> int:
        messages = self._section(section)
        count = len(messages)
        messages.clear()
        return count

    def clear_all(self) -> int:
        return sum(self.clear_section(section) for section in self.registry)
