"""Health Check API 라우터.

릴레이 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter, Depends

from .deps import verify_auth_header
from . import signaling

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check():
    """릴레이 상태를 확인합니다.

    Returns:
        dict: 상태, 연결 수, 룸 수
    """
    manager = signaling._room_manager
    if manager is None:
        return {"status": "not_initialized", "connections": 0, "rooms": 0}
    return {
        "status": "ok",
        "connections": len(manager.connections),
        "rooms": len(manager.rooms),
    }


@router.get("/rooms")
async def get_rooms(_: bool = Depends(verify_auth_header)):
    """열려 있는 룸 목록을 조회합니다."""
    manager = signaling._room_manager
    return {"rooms": manager.get_room_list() if manager else []}
