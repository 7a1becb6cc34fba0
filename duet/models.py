from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
import uuid

from .config import ROOM_CAPACITY


class PeerState(str, Enum):
    # Connected, not yet joined.
    DISCONNECTED_INITIAL = "disconnected-initial"
    SEARCHING = "searching"
    PAIRED = "paired"


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"


class RoomState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


# --- Pydantic Schemas ---
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MemberSnapshot(_CamelModel):
    peer_id: str = Field(alias="peerId")
    display_name: str = Field("", alias="displayName")
    role: Optional[Role] = None


class RoomSnapshot(_CamelModel):
    room_id: str = Field(alias="roomId")
    capacity: int
    members: List[MemberSnapshot] = []

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class RoomRef(_CamelModel):
    """Whatever the client echoes back as its room; only the id is trusted."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    room_id: str = Field(alias="roomId")


class JoinEvent(_CamelModel):
    display_name: str = Field("", alias="displayName")


class PrepareEvent(_CamelModel):
    room: RoomRef


class RoomEvent(_CamelModel):
    room_id: str = Field(alias="roomId")


class RelayEvent(_CamelModel):
    payload: Any = None
    room_id: str = Field(alias="roomId")


class LeaveEvent(_CamelModel):
    room_id: str = Field(alias="roomId")
    display_name: str = Field("", alias="displayName")


class StatsResponse(BaseModel):
    online: int
    rooms: int
    waiting: int


# --- Business Logic ---
class Peer:
    def __init__(self, connection_id: str, peer_id: Optional[str] = None):
        self.connection_id = connection_id
        self.peer_id = peer_id or str(uuid.uuid4())
        self.display_name = ""
        self.state = PeerState.DISCONNECTED_INITIAL
        self.room_id: Optional[str] = None
        self.role: Optional[Role] = None

    def snapshot(self) -> MemberSnapshot:
        return MemberSnapshot(peer_id=self.peer_id, display_name=self.display_name, role=self.role)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peerId": self.peer_id,
            "displayName": self.display_name,
            "state": self.state.value,
            "roomId": self.room_id,
            "role": self.role.value if self.role else None,
        }

    def __repr__(self):
        return f"Peer({self.peer_id!r}, state={self.state.value}, room={self.room_id!r})"


class Room:
    def __init__(self, room_id: Optional[str] = None, capacity: int = ROOM_CAPACITY):
        self.room_id = room_id or str(uuid.uuid4())
        self.capacity = capacity
        # Join order; members[0] becomes host.
        self.members: List[Peer] = []

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.capacity

    @property
    def is_empty(self) -> bool:
        return not self.members

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            room_id=self.room_id,
            capacity=self.capacity,
            members=[p.snapshot() for p in self.members],
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.snapshot().to_wire()

    def __repr__(self):
        return f"Room({self.room_id!r}, {len(self.members)}/{self.capacity})"
