"""In-memory peer and room tables.

Neither table does any locking or I/O; `SignalingCoordinator` owns one of each
and serializes every access behind its own lock.
"""

from __future__ import annotations

import itertools
import logging
from typing import Dict, Iterator, Optional

from .config import ROOM_CAPACITY
from .models import Peer, PeerState, Role, Room, RoomState


logger = logging.getLogger(__name__)


class PeerRegistry:
    def __init__(self):
        self._peers: Dict[str, Peer] = {}

    def register(self, connection_id: str) -> Peer:
        peer = Peer(connection_id)
        self._peers[connection_id] = peer
        logger.debug("peer registered peer_id=%s conn=%s", peer.peer_id, connection_id)
        return peer

    def find(self, connection_id: str) -> Optional[Peer]:
        return self._peers.get(connection_id)

    def set_name(self, peer: Peer, name: str) -> None:
        peer.display_name = name

    def unregister(self, connection_id: str) -> Optional[Peer]:
        peer = self._peers.pop(connection_id, None)
        if peer:
            logger.debug("peer unregistered peer_id=%s conn=%s", peer.peer_id, connection_id)
        return peer

    def count(self) -> int:
        return len(self._peers)

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._peers


class RoomTable:
    """Open rooms, in creation order.

    `_waiting` indexes the rooms that still have a free slot so matchmaking never
    walks full rooms. Joins alone keep it at one entry at most; leaves from full
    rooms can reopen older rooms, which are then preferred over newer ones.
    """

    def __init__(self, capacity: int = ROOM_CAPACITY):
        self.capacity = capacity
        self._rooms: Dict[str, Room] = {}
        self._waiting: Dict[str, Room] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()

    def find_available(self) -> Optional[Room]:
        if not self._waiting:
            return None
        return min(self._waiting.values(), key=lambda r: self._order[r.room_id])

    def create(self) -> Room:
        room = Room(capacity=self.capacity)
        self._rooms[room.room_id] = room
        self._waiting[room.room_id] = room
        self._order[room.room_id] = next(self._seq)
        logger.info("room created room=%s", room.room_id)
        return room

    def find_by_id(self, room_id: Optional[str]) -> Optional[Room]:
        if not room_id:
            return None
        return self._rooms.get(room_id)

    def add_member(self, room: Room, peer: Peer) -> None:
        if room.is_full:
            raise ValueError(f"room {room.room_id} is full")

        room.members.append(peer)
        peer.room_id = room.room_id

        if room.is_full:
            self._waiting.pop(room.room_id, None)
            for member in room.members:
                member.state = PeerState.PAIRED
            logger.info("room paired room=%s", room.room_id)

    def remove_member(self, room: Room, peer: Peer) -> RoomState:
        if peer in room.members:
            room.members.remove(peer)

        peer.state = PeerState.SEARCHING
        peer.room_id = None
        peer.role = None

        if room.is_empty:
            self._rooms.pop(room.room_id, None)
            self._waiting.pop(room.room_id, None)
            self._order.pop(room.room_id, None)
            logger.info("room deleted room=%s", room.room_id)
            return RoomState.DELETED

        self._waiting[room.room_id] = room
        for member in room.members:
            member.state = PeerState.SEARCHING
            # Roles belong to a full room; the next prepare hands them out again.
            member.role = None
        return RoomState.ACTIVE

    def assign_roles(self, room: Room) -> None:
        """First joiner hosts, everyone after it is a guest."""
        for index, member in enumerate(room.members):
            member.role = Role.HOST if index == 0 else Role.GUEST

    def waiting_count(self) -> int:
        return len(self._waiting)

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))
