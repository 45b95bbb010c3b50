"""Moderation state machine over the message store.

pending --approve--> approved
pending --reject---> removed
   any  --delete---> removed

Every mutation appends to the event log and publishes exactly the events that
realtime clients consume. Listeners are called while the engine lock is held,
so the order clients see events in is the order mutations happened in.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from errors import InvalidInput, NotFound, UnknownSection, WallError
from event_log import EventLog
from schemas import Message, MessageStatus
from store import MessageStore

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]

# Realtime event names
PENDING_ADDED = "pending-message-added"
APPROVED = "message-approved"
REJECTED = "message-rejected"
DELETED = "message-deleted"
SECTION_CLEARED = "section-cleared"
ALL_CLEARED = "all-messages-cleared"
INITIAL = "initial-messages"

__all__ = [
    "ModerationEngine", "WallError", "UnknownSection", "NotFound", "InvalidInput",
    "coerce_id", "PENDING_ADDED", "APPROVED", "REJECTED", "DELETED",
    "SECTION_CLEARED", "ALL_CLEARED", "INITIAL",
]


def coerce_id(raw) -> Optional[int]:
    """Ids arrive as path strings or JSON numbers; anything else is unknown."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


class ModerationEngine:
    def __init__(self, store: MessageStore, log: EventLog):
        self.store = store
        self.log = log
        self.lock = threading.RLock()
        self._listeners: List[Listener] = []

    # -------------------- pub/sub --------------------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("listener failed for %s", event)

    # -------------------- reads --------------------

    def snapshot(self) -> Dict[str, List[dict]]:
        with self.lock:
            return self.store.snapshot()

    def _require(self, section: str, message_id) -> Tuple[int, Message]:
        if section not in self.store.registry:
            raise UnknownSection(section)
        mid = coerce_id(message_id)
        message = self.store.find(section, mid) if mid is not None else None
        if message is None:
            raise NotFound(section, message_id)
        return mid, message

    # -------------------- single-item transitions --------------------

    def submit(self, section: str, author, text) -> Message:
        with self.lock:
            message = self.store.append(section, text, author)
            self._publish(PENDING_ADDED, {"section": section, "message": message.to_wire()})
            self.log.append("new-message", "New message submitted", {
                "section": section,
                "author": message.author,
                "textLength": len(message.text),
            })
        logger.info("New message - section: %s, author: %s", section, message.author)
        return message

    def _approve(self, section: str, message_id) -> Tuple[Message, bool]:
        mid, message = self._require(section, message_id)
        if message.status == MessageStatus.approved:
            return message, False
        self.store.set_status(section, mid, MessageStatus.approved)
        self._publish(APPROVED, {"section": section, "message": message.to_wire()})
        return message, True

    def approve(self, section: str, message_id) -> Message:
        with self.lock:
            message, changed = self._approve(section, message_id)
            if changed:
                self.log.append("approve", "Message approved", {
                    "section": section, "id": message.id, "author": message.author,
                })
        return message

    def _remove(self, section: str, message_id, event: str) -> Message:
        mid, _ = self._require(section, message_id)
        message = self.store.remove(section, mid)
        self._publish(event, {"section": section, "id": mid})
        return message

    def reject(self, section: str, message_id) -> Message:
        with self.lock:
            message = self._remove(section, message_id, REJECTED)
            self.log.append("reject", "Message rejected", {
                "section": section, "id": message.id, "author": message.author,
            })
        return message

    def delete(self, section: str, message_id) -> Message:
        with self.lock:
            message = self._remove(section, message_id, DELETED)
            self.log.append("delete", "Message deleted", {
                "section": section, "id": message.id, "author": message.author,
            })
        return message

    # -------------------- bulk --------------------

    def bulk_approve(self, refs: Iterable[Tuple[str, Any]]) -> int:
        count = 0
        with self.lock:
            for section, message_id in refs:
                try:
                    _, changed = self._approve(section, message_id)
                except (UnknownSection, NotFound):
                    continue
                if changed:
                    count += 1
            self.log.append("approve-bulk", f"{count} messages approved in bulk", {"count": count})
        return count

    def bulk_reject(self, refs: Iterable[Tuple[str, Any]]) -> int:
        count = 0
        with self.lock:
            for section, message_id in refs:
                try:
                    self._remove(section, message_id, REJECTED)
                except (UnknownSection, NotFound):
                    continue
                count += 1
            self.log.append("reject-bulk", f"{count} messages rejected in bulk", {"count": count})
        return count

    # -------------------- clearing --------------------

    def clear_section(self, section: str) -> int:
        with self.lock:
            count = self.store.clear_section(section)
            self._publish(SECTION_CLEARED, {"section": section})
            self.log.append("delete-section", f"All messages in {section} deleted", {
                "section": section, "count": count,
            })
        return count

    def clear_all(self) -> int:
        with self.lock:
            count = self.store.clear_all()
            self._publish(ALL_CLEARED, {})
            self.log.append("clear-all", "All messages deleted", {"count": count})
        return count

    # -------------------- connection bookkeeping --------------------

    def record_connection(self, client_id: str, total: int) -> None:
        with self.lock:
            self.log.append("connection", "New connection", {"socketId": client_id, "total": total})

    def record_disconnect(self, client_id: str, total: int) -> None:
        with self.lock:
            self.log.append("disconnect", "Connection closed", {"socketId": client_id, "total": total})
