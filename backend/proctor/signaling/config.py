"""시그널링 모듈 설정.

릴레이 서버 주소와 재연결 정책을 환경변수에서 읽어옵니다.
"""

import os
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class SignalingConfig:
    """시그널링 릴레이 연결 설정."""

    # 릴레이 WebSocket 엔드포인트
    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")

    # 재연결 대기 시간 (초) - 실패할 때마다 두 배씩 증가
    RECONNECT_DELAY: float = float(os.getenv("SIGNALING_RECONNECT_DELAY", "1.0"))

    # 재연결 대기 시간 상한 (초)
    MAX_RECONNECT_DELAY: float = float(os.getenv("SIGNALING_MAX_RECONNECT_DELAY", "30.0"))

    # websockets keepalive
    PING_INTERVAL: float = 20.0
    PING_TIMEOUT: float = 10.0


signaling_config = SignalingConfig()
