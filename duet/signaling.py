from fastapi import WebSocket, WebSocketDisconnect
from typing import Any, Dict, Optional, Set
import asyncio
import logging
import secrets

from .config import OUTBOUND_QUEUE_SIZE

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Live sockets plus the room-scoped broadcast groups they are subscribed to.

    `send` and `broadcast` only enqueue; each connection has its own writer task, so a
    peer that stops reading never blocks anyone else. A full queue or a failed write
    drops the frame, nothing is retried.
    """

    def __init__(self, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.queue_size = queue_size
        self.active_connections: Dict[str, WebSocket] = {}
        self.groups: Dict[str, Set[str]] = {}
        self.memberships: Dict[str, Set[str]] = {}
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._writers: Dict[str, asyncio.Task] = {}

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = secrets.token_hex(16)
        outbox: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self.active_connections[connection_id] = websocket
        self._outboxes[connection_id] = outbox
        self._writers[connection_id] = asyncio.create_task(
            self._write_loop(connection_id, websocket, outbox), name=f"duet-writer-{connection_id}"
        )
        logger.info("connection opened conn=%s", connection_id)
        return connection_id

    def disconnect(self, connection_id: str):
        self.active_connections.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)
        if writer:
            writer.cancel()
        for group in list(self.memberships.get(connection_id, ())):
            self.unsubscribe(connection_id, group)
        logger.info("connection closed conn=%s", connection_id)

    def subscribe(self, connection_id: str, group: str):
        self.groups.setdefault(group, set()).add(connection_id)
        self.memberships.setdefault(connection_id, set()).add(group)

    def unsubscribe(self, connection_id: str, group: Optional[str]):
        joined = self.memberships.get(connection_id)
        if joined is not None:
            joined.discard(group)
            if not joined:
                del self.memberships[connection_id]

        members = self.groups.get(group)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.groups[group]

    def group_members(self, group: str) -> Set[str]:
        return set(self.groups.get(group, ()))

    def send(self, connection_id: str, message: Dict[str, Any]):
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        try:
            outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("outbox full, dropping conn=%s type=%s", connection_id, message.get("type"))

    def broadcast(self, message: Dict[str, Any], group: str, sender: Optional[str] = None):
        for connection_id in sorted(self.group_members(group)):
            if connection_id != sender:
                self.send(connection_id, message)

    def broadcast_all(self, message: Dict[str, Any]):
        for connection_id in list(self.active_connections):
            self.send(connection_id, message)

    async def flush(self, *connection_ids: str):
        """Wait until queued frames have been handed to their sockets (all connections by default)."""
        targets = connection_ids or list(self._outboxes)
        outboxes = [self._outboxes[c] for c in targets if c in self._outboxes]
        await asyncio.gather(*(outbox.join() for outbox in outboxes))

    async def _write_loop(self, connection_id: str, websocket: WebSocket, outbox: asyncio.Queue):
        while True:
            message = await outbox.get()
            try:
                await websocket.send_json(message)
            except (RuntimeError, WebSocketDisconnect, OSError) as e:
                logger.warning("send failed conn=%s type=%s: %s", connection_id, message.get("type"), e)
            finally:
                outbox.task_done()
