"""릴레이 룸/연결 관리 모듈.

시그널링 릴레이가 알아야 하는 최소한의 토폴로지만 보관합니다: 현재 연결된
identity와 WebSocket, 그리고 룸별 허용 명단과 감독관. 미디어나 협상 상태는
전혀 알지 못합니다.

Architecture:
    - connections: Dict[str, Any] - identity → WebSocket
    - rooms: Dict[str, RelayRoom] - 룸 이름 → 룸 정보

Examples:
    >>> manager = RoomManager()
    >>> manager.connect("teacher-01", ws1)
    >>> manager.create_room(RoomCreated(room_name="exam-1", allowed_identities=["UNI001"],
    ...                                 coordinator_identity="teacher-01"))
    >>> manager.connect("UNI001", ws2)
    >>> [room.name for room in manager.rooms_for("UNI001")]
    ['exam-1']
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..signaling.messages import RoomCreated

logger = logging.getLogger(__name__)


@dataclass
class RelayRoom:
    """릴레이가 보관하는 룸 정보.

    Attributes:
        name (str): 룸 이름
        coordinator (str): 감독관 identity
        allowed (Set[str]): 허용된 참가자 identity
        members (Set[str]): JoinRoom을 보낸 참가자 identity
        announcement (RoomCreated): 나중에 연결한 참가자에게 다시 보낼 원본 메시지
    """
    name: str
    coordinator: str
    allowed: Set[str]
    announcement: RoomCreated
    members: Set[str] = field(default_factory=set)

    def participants(self) -> Set[str]:
        """감독관과 참가한 수험생 identity."""
        return {self.coordinator} | self.members


class RoomManager:
    """identity별 연결과 룸 토폴로지를 관리합니다.

    Thread Safety:
        - asyncio 단일 스레드에서만 사용 (await 지점 없음)
    """

    def __init__(self):
        # identity -> websocket
        self.connections: Dict[str, Any] = {}

        # room_name -> RelayRoom
        self.rooms: Dict[str, RelayRoom] = {}

    # ------------------------------------------------------------------
    # 연결
    # ------------------------------------------------------------------

    def connect(self, identity: str, websocket: Any) -> Optional[Any]:
        """identity의 연결을 등록합니다.

        Returns:
            Optional[Any]: 같은 identity로 이미 연결되어 있던 이전 WebSocket
        """
        previous = self.connections.get(identity)
        self.connections[identity] = websocket
        logger.info(f"[Relay] {identity} 연결됨 (총 {len(self.connections)}명)")
        return previous

    def disconnect(self, identity: str, websocket: Any) -> List[str]:
        """연결을 해제합니다. 감독관이었다면 그 룸들을 삭제합니다.

        같은 identity가 이미 새 연결로 교체되었으면 아무것도 하지 않습니다.

        Returns:
            List[str]: 삭제된 룸 이름
        """
        if self.connections.get(identity) is not websocket:
            return []
        del self.connections[identity]

        dropped = [name for name, room in self.rooms.items() if room.coordinator == identity]
        for name in dropped:
            del self.rooms[name]
            logger.info(f"[Relay] 룸 '{name}' 삭제 (감독관 연결 끊김)")
        for room in self.rooms.values():
            room.members.discard(identity)

        logger.info(f"[Relay] {identity} 연결 끊김 (총 {len(self.connections)}명)")
        return dropped

    def get_socket(self, identity: str) -> Optional[Any]:
        return self.connections.get(identity)

    # ------------------------------------------------------------------
    # 룸
    # ------------------------------------------------------------------

    def create_room(self, message: RoomCreated) -> RelayRoom:
        """룸을 만들거나 (감독관 재연결 시) 덮어씁니다."""
        previous = self.rooms.get(message.room_name)
        room = RelayRoom(
            name=message.room_name,
            coordinator=message.coordinator_identity,
            allowed=set(message.allowed_identities),
            announcement=message,
        )
        if previous is not None and previous.coordinator == room.coordinator:
            room.members = previous.members & room.allowed
        self.rooms[room.name] = room
        logger.info(f"[Relay] 룸 '{room.name}' 생성 (감독관={room.coordinator}, 허용 {len(room.allowed)}명)")
        return room

    def join_room(self, room_name: str, identity: str) -> Optional[RelayRoom]:
        """참가자를 룸 멤버로 추가합니다. 허용되지 않으면 None."""
        room = self.rooms.get(room_name)
        if room is None or identity not in room.allowed:
            return None
        room.members.add(identity)
        logger.info(f"[Relay] {identity} → 룸 '{room_name}' 참가 ({len(room.members)}명)")
        return room

    def get_room(self, room_name: str) -> Optional[RelayRoom]:
        return self.rooms.get(room_name)

    def rooms_for(self, identity: str) -> List[RelayRoom]:
        """identity가 허용된 룸 목록 (RoomCreated 재전송용)."""
        return [room for room in self.rooms.values() if identity in room.allowed]

    def rooms_with_member(self, identity: str) -> List[RelayRoom]:
        """identity가 감독관이거나 참가한 룸 목록."""
        return [room for room in self.rooms.values() if identity in room.participants()]

    def can_signal(self, sender: str, recipient: str) -> bool:
        """두 identity가 같은 룸의 감독관과 허용 참가자 관계인지 여부."""
        return any(
            (room.coordinator == sender and recipient in room.allowed)
            or (room.coordinator == recipient and sender in room.allowed)
            for room in self.rooms.values()
        )

    def get_room_list(self) -> List[dict]:
        return [
            {
                "room_name": room.name,
                "coordinator": room.coordinator,
                "allowed_count": len(room.allowed),
                "members": sorted(room.members),
                "connected": sorted(i for i in room.allowed if i in self.connections),
            }
            for room in self.rooms.values()
        ]
