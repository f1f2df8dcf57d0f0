"""시험 감독 패키지.

감독관 한 명이 여러 수험생의 화면을 WebRTC로 받아 녹화합니다.
릴레이는 세션 설정 메시지만 전달하고 미디어는 다루지 않습니다.

Modules:
    signaling: 시그널링 메시지 모델 및 릴레이 WebSocket 채널
    webrtc: 참가자별 연결 레지스트리와 협상 상태 머신
    recording: 스트림 녹화 및 아카이브 내보내기
    session: 감독관 / 수험생 세션
    roster: 참가자 명단 / 토큰 REST 클라이언트
"""

from .errors import (
    ProctoringError,
    TransportError,
    NegotiationError,
    MessageFormatError,
    MediaAcquisitionError,
    RecordingError,
    ExportError,
    RosterError,
)

__version__ = "0.1.0"

__all__ = [
    "ProctoringError",
    "TransportError",
    "NegotiationError",
    "MessageFormatError",
    "MediaAcquisitionError",
    "RecordingError",
    "ExportError",
    "RosterError",
]
