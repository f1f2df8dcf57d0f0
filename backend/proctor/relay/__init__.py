"""시그널링 릴레이 모듈.

Classes:
    RoomManager: identity별 연결과 룸 토폴로지 관리
    RelayRoom: 룸 정보 (허용 명단, 감독관, 참가자)
"""

from .room_manager import RoomManager, RelayRoom

__all__ = ["RoomManager", "RelayRoom"]
