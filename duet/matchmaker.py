"""Matchmaking, relay and departure handling for two-party rooms.

Every operation runs start to finish under one lock: find-or-create a room, add the
peer and queue the resulting frames, with no other peer's event interleaved. Splitting
that would let two concurrent joins both see the same free slot. Nothing awaits a
socket while the lock is held; frames go out through per-connection writer tasks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import WebSocket

from .config import ROOM_CAPACITY
from .models import Peer, PeerState, RoomState, StatsResponse
from .registry import PeerRegistry, RoomTable
from .signaling import ConnectionManager


logger = logging.getLogger(__name__)


# Outbound event names
WELCOME = "welcome"
JOINED = "joined"
ROOM = "room"
PREPARED = "prepared"
READY = "ready"
LEFT = "left"
PEER_LEFT = "peer-left"
ONLINE_COUNT = "online-count"

RELAYED_KINDS = ("offer", "answer", "ice-candidate")


class SignalingCoordinator:
    def __init__(self, connections: Optional[ConnectionManager] = None):
        self.connections = connections or ConnectionManager()
        self.peers = PeerRegistry()
        self.rooms = RoomTable(ROOM_CAPACITY)
        self._lock = asyncio.Lock()

    # --- connection lifecycle ---

    async def connect(self, websocket: WebSocket) -> str:
        connection_id = await self.connections.connect(websocket)
        async with self._lock:
            peer = self.peers.register(connection_id)
            self.connections.send(connection_id, {"type": WELCOME, "peerId": peer.peer_id})
            self._broadcast_online()
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self.connections.disconnect(connection_id)
            peer = self.peers.find(connection_id)
            if peer is None:
                logger.debug("disconnect without peer conn=%s", connection_id)
            else:
                vacated = self._leave_room(peer)
                if vacated:
                    self.connections.broadcast({"type": PEER_LEFT, "peer": peer.to_dict()}, vacated)
                self.peers.unregister(connection_id)
            self._broadcast_online()

    # --- matchmaker ---

    async def join(self, connection_id: str, display_name: str) -> None:
        async with self._lock:
            peer = self.peers.find(connection_id)
            if peer is None:
                # A voluntary leave unregisters the peer; the socket may come back for another round.
                peer = self.peers.register(connection_id)
            elif peer.room_id:
                logger.warning("join ignored, peer already in room peer_id=%s room=%s", peer.peer_id, peer.room_id)
                return

            self.peers.set_name(peer, display_name)
            peer.state = PeerState.SEARCHING

            room = self.rooms.find_available() or self.rooms.create()
            self.rooms.add_member(room, peer)
            self.connections.subscribe(connection_id, room.room_id)
            logger.info("peer joined peer_id=%s name=%r room=%s members=%d",
                        peer.peer_id, display_name, room.room_id, len(room.members))

            snapshot = room.to_dict()
            self.connections.send(connection_id, {"type": JOINED, "room": snapshot})
            self.connections.broadcast({"type": ROOM, "room": snapshot}, room.room_id)
            self._broadcast_online()

    async def prepare(self, connection_id: str, room_id: str) -> None:
        async with self._lock:
            room = self.rooms.find_by_id(room_id)
            if room is None:
                logger.debug("prepare for unknown room=%s", room_id)
                return
            if not room.is_full:
                logger.debug("prepare for room that is not full room=%s", room_id)
                return

            self.rooms.assign_roles(room)
            self.connections.broadcast({"type": PREPARED, "room": room.to_dict()}, room_id, connection_id)

    async def ready(self, connection_id: str, room_id: str) -> None:
        async with self._lock:
            room = self.rooms.find_by_id(room_id)
            if room is None:
                logger.debug("ready for unknown room=%s", room_id)
                return
            self.connections.broadcast({"type": READY, "room": room.to_dict()}, room_id, connection_id)

    # --- relay ---

    async def relay(self, connection_id: str, kind: str, payload: Any, room_id: str) -> None:
        if kind not in RELAYED_KINDS:
            raise ValueError(f"not a relayed event: {kind}")
        async with self._lock:
            logger.debug("relay type=%s room=%s from=%s", kind, room_id, connection_id)
            self.connections.broadcast({"type": kind, "payload": payload}, room_id, connection_id)

    async def get_room(self, connection_id: str, room_id: str) -> None:
        async with self._lock:
            room = self.rooms.find_by_id(room_id)
            if room is None:
                return
            self.connections.broadcast({"type": ROOM, "room": room.to_dict()}, room.room_id)

    # --- departures ---

    async def leave(self, connection_id: str, room_id: str, display_name: str = "") -> None:
        async with self._lock:
            self.connections.unsubscribe(connection_id, room_id)
            peer = self.peers.find(connection_id)
            if peer is None:
                logger.debug("leave without peer conn=%s", connection_id)
                return

            if peer.room_id and peer.room_id != room_id:
                self.connections.unsubscribe(connection_id, peer.room_id)
            vacated = self._leave_room(peer)
            if vacated:
                logger.info("peer left peer_id=%s name=%r room=%s", peer.peer_id, display_name, vacated)
                self.connections.broadcast({"type": LEFT}, vacated, connection_id)

            self.peers.unregister(connection_id)
            self._broadcast_online()

    def _leave_room(self, peer: Peer) -> Optional[str]:
        room = self.rooms.find_by_id(peer.room_id)
        if room is None:
            return None
        state = self.rooms.remove_member(room, peer)
        if state is RoomState.ACTIVE:
            logger.info("room reopened room=%s members=%d", room.room_id, len(room.members))
        return room.room_id

    # --- presence ---

    def _broadcast_online(self) -> None:
        self.connections.broadcast_all({"type": ONLINE_COUNT, "count": self.peers.count()})

    async def stats(self) -> StatsResponse:
        async with self._lock:
            return StatsResponse(
                online=self.peers.count(),
                rooms=len(self.rooms),
                waiting=self.rooms.waiting_count(),
            )

