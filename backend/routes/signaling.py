"""시그널링 릴레이 WebSocket 라우터.

세션 설정 메시지를 identity 기준으로 전달합니다. 미디어는 다루지 않으며,
룸 토폴로지(허용 명단과 감독관)만 보관합니다.

Routing:
    - room_created: 룸 저장 후 연결된 허용 참가자에게 전달
      (나중에 연결한 허용 참가자에게는 연결 직후 다시 전달)
    - join_room: 룸의 감독관에게 전달
    - session_offer / session_answer / network_candidate: data.to 로 전달
      (같은 룸의 감독관과 허용 참가자 사이에서만)
    - chat_message: 같은 룸의 다른 참가자 모두에게 전달

Note:
    - 발신자 필드(from, sender, identity, coordinatorIdentity)는 항상 소켓의
      identity로 덮어씀
    - 수신자가 연결되어 있지 않으면 경고 후 버림 (릴레이는 메시지를 저장하지 않음)
    - 감독관 연결이 끊기면 그 룸은 삭제됨
"""

import logging
from typing import Iterable, Optional, TYPE_CHECKING

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from proctor.errors import MessageFormatError
from proctor.signaling.messages import (
    ChatMessage,
    JoinRoom,
    NetworkCandidate,
    RoomCreated,
    SessionAnswer,
    SessionOffer,
    SignalingMessage,
    encode_message,
    parse_message,
)
from .deps import verify_ws_token

if TYPE_CHECKING:
    from proctor.relay import RoomManager

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매니저 참조 (app.py에서 설정됨)
_room_manager: Optional["RoomManager"] = None


def init_managers(room_manager: "RoomManager"):
    """룸 매니저 인스턴스를 설정합니다. app.py에서 호출됩니다."""
    global _room_manager
    _room_manager = room_manager
    logger.info("[Relay] 시그널링 라우터 매니저 초기화 완료")


async def send_to(identity: str, message: SignalingMessage) -> bool:
    """identity에게 메시지를 전송합니다. 연결되어 있지 않으면 False."""
    websocket = _room_manager.get_socket(identity)
    if websocket is None:
        logger.warning(f"[Relay] {message.TYPE} 전달 실패: {identity} 연결 없음")
        return False
    try:
        await websocket.send_text(encode_message(message))
    except Exception as e:
        logger.error(f"[Relay] {identity}에 {message.TYPE} 전송 중 오류: {e}")
        return False
    return True


async def send_many(identities: Iterable[str], message: SignalingMessage) -> int:
    sent = 0
    for identity in identities:
        if await send_to(identity, message):
            sent += 1
    return sent


async def route_message(identity: str, message: SignalingMessage) -> None:
    """수신 메시지를 라우팅 규칙에 따라 전달합니다."""
    if isinstance(message, RoomCreated):
        message = message.model_copy(update={"coordinator_identity": identity})
        room = _room_manager.create_room(message)
        connected = [i for i in room.allowed if _room_manager.get_socket(i) is not None]
        sent = await send_many(connected, message)
        logger.info(f"[Relay] 룸 '{room.name}' 공지: {sent}/{len(room.allowed)}명")

    elif isinstance(message, JoinRoom):
        message = message.model_copy(update={"identity": identity})
        room = _room_manager.join_room(message.room_name, identity)
        if room is None:
            logger.warning(f"[Relay] {identity}의 룸 '{message.room_name}' 참가 거부")
            return
        await send_to(room.coordinator, message)

    elif isinstance(message, (SessionOffer, SessionAnswer, NetworkCandidate)):
        message = message.model_copy(update={"sender": identity})
        if not _room_manager.can_signal(identity, message.to):
            logger.warning(f"[Relay] {identity} → {message.to} {message.TYPE} 거부 (같은 룸 아님)")
            return
        await send_to(message.to, message)

    elif isinstance(message, ChatMessage):
        message = message.model_copy(update={"sender": identity})
        rooms = _room_manager.rooms_with_member(identity)
        if message.room_name:
            rooms = [room for room in rooms if room.name == message.room_name]
        recipients = set()
        for room in rooms:
            recipients |= room.participants()
        recipients.discard(identity)
        await send_many(sorted(recipients), message)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    identity: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
):
    """시그널링 릴레이 WebSocket 엔드포인트.

    Args:
        websocket: FastAPI WebSocket 연결 객체
        identity: 접속자 identity (쿼리 파라미터, 필수)
        token: 접근 토큰 (RELAY_ACCESS_TOKEN 설정 시 필수)
    """
    if _room_manager is None:
        logger.error("[Relay] 매니저가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    if not identity:
        await websocket.close(code=4000, reason="identity required")
        return

    await websocket.accept()

    previous = _room_manager.connect(identity, websocket)
    if previous is not None:
        logger.warning(f"[Relay] {identity} 중복 연결, 이전 연결 종료")
        try:
            await previous.close(code=4002, reason="replaced")
        except Exception as e:
            logger.debug(f"[Relay] 이전 연결 종료 중 오류: {e}")

    # 연결 전에 열린 룸 공지를 다시 전달
    for room in _room_manager.rooms_for(identity):
        await send_to(identity, room.announcement)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = parse_message(raw)
            except MessageFormatError as e:
                logger.warning(f"[Relay] {identity}의 잘못된 메시지 무시: {e}")
                continue
            await route_message(identity, message)

    except WebSocketDisconnect:
        logger.info(f"[Relay] {identity} 연결 끊김")
    except Exception as e:
        logger.error(f"[Relay] {identity}의 WebSocket 연결 중 오류: {e}", exc_info=True)
    finally:
        _room_manager.disconnect(identity, websocket)
