"""FastAPI 시그널링 릴레이 서버.

감독관과 수험생 사이의 세션 설정 메시지(offer/answer/candidate, 룸 공지,
채팅)를 identity 기준으로 전달합니다. 미디어는 릴레이를 거치지 않고
WebRTC로 직접 흐릅니다.

주요 기능:
    - identity 기반 WebSocket 라우팅 (/ws?identity=...)
    - 룸 허용 명단 보관 및 늦게 접속한 참가자에게 룸 공지 재전송
    - 룸 목록 / 상태 조회 API

Architecture:
    - RoomManager: identity → WebSocket, 룸 → 허용 명단/감독관
    - routes.signaling: 메시지 라우팅
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 환경변수 로드 (config/.env)
load_dotenv(Path(__file__).parent / "config" / ".env")

from proctor.logging_config import setup_logging
from proctor.relay import RoomManager
from routes import health_router, signaling_router, init_signaling_managers

setup_logging("relay")
logger = logging.getLogger(__name__)

# 글로벌 매니저 인스턴스
room_manager = RoomManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """릴레이 생명주기. 종료 시 남은 WebSocket 연결을 닫습니다."""
    logger.info("[Relay] 시그널링 릴레이 시작")

    yield

    logger.info("[Relay] 서버 종료 중...")
    for identity, websocket in list(room_manager.connections.items()):
        try:
            await websocket.close(code=1001, reason="server shutdown")
        except Exception as e:
            logger.debug(f"[Relay] {identity} 연결 종료 중 오류: {e}")
    room_manager.connections.clear()
    room_manager.rooms.clear()


app = FastAPI(title="Exam Proctoring Signaling Relay", lifespan=lifespan)

# CORS - 허용 origin은 환경변수로 설정 (기본: 로컬 개발 환경)
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=os.getenv(
        "CORS_ORIGIN_REGEX",
        r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
    ),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 매니저 인스턴스 전달
init_signaling_managers(room_manager)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트."""
    return {"status": "ok", "service": "Exam Proctoring Signaling Relay"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
