"""WebSocket fan-out.

Each connected client gets a bounded outbound queue drained by its own writer
task. ``publish`` only enqueues, so one slow or dead socket never holds up the
others. A client whose queue overflows is dropped and has to reconnect, at
which point it reconciles from a fresh ``initial-messages`` snapshot.
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket

from moderation import INITIAL, ModerationEngine
from schemas import Frame

logger = logging.getLogger(__name__)


class Subscriber:
    def __init__(self, client_id: str, websocket: WebSocket, queue_size: int):
        self.id = client_id
        self.websocket = websocket
        self.loop = asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.task: Optional[asyncio.Task] = None
        self.closed = False
        self.on_overflow = None

    def offer(self, frame: Dict[str, Any]) -> None:
        """Hand a frame to this client's loop without waiting on the socket."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._enqueue(frame)
        else:
            self.loop.call_soon_threadsafe(self._enqueue, frame)

    def _enqueue(self, frame: Dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("client %s is too slow, dropping it", self.id)
            if self.on_overflow is not None:
                self.on_overflow(self)

    def start(self) -> None:
        self.task = self.loop.create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            frame = await self.queue.get()
            try:
                await self.websocket.send_json(frame)
            except Exception as e:
                logger.warning("transport failure for client %s: %s", self.id, e)
                self.closed = True
                return

    def stop(self) -> None:
        self.closed = True
        if self.task is not None and not self.task.done():
            self.task.cancel()


class ConnectionManager:
    def __init__(self, engine: ModerationEngine, queue_size: int = 100):
        self.engine = engine
        self.queue_size = queue_size
        self.subscribers: Dict[str, Subscriber] = {}
        self.active_connections = 0
        self._ids = itertools.count(1)
        engine.subscribe(self.publish)

    async def connect(self, websocket: WebSocket) -> Subscriber:
        await websocket.accept()
        sub = Subscriber(f"ws-{next(self._ids)}", websocket, self.queue_size)
        sub.on_overflow = self._drop
        # Snapshot and registration happen under the engine lock so no event
        # can slip in between them.
        with self.engine.lock:
            sub.offer(Frame(type=INITIAL, data=self.engine.store.snapshot()).model_dump(mode="json"))
            self.subscribers[sub.id] = sub
            self.active_connections += 1
            total = self.active_connections
            self.engine.record_connection(sub.id, total)
        sub.start()
        logger.info("client connected: %s (total %d)", sub.id, total)
        return sub

    def disconnect(self, sub: Subscriber) -> None:
        with self.engine.lock:
            if self.subscribers.pop(sub.id, None) is None:
                return
            self.active_connections -= 1
            total = self.active_connections
            self.engine.record_disconnect(sub.id, total)
        sub.stop()
        logger.info("client disconnected: %s (total %d)", sub.id, total)

    def _drop(self, sub: Subscriber) -> None:
        self.disconnect(sub)
        sub.loop.create_task(self._close(sub.websocket))

    @staticmethod
    async def _close(websocket: WebSocket) -> None:
        try:
            await websocket.close(code=1013)
        except Exception as e:
            logger.debug("close after overflow failed: %s", e)

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        frame = Frame(type=event, data=payload).model_dump(mode="json")
        for sub in list(self.subscribers.values()):
            sub.offer(frame)
