"""시그널링 모듈.

Classes:
    SignalingChannel: 릴레이 WebSocket 채널 (자동 재연결)
    RoomCreated, JoinRoom, SessionOffer, SessionAnswer, NetworkCandidate, ChatMessage: 메시지 모델

Config:
    signaling_config: 릴레이 주소 및 재연결 설정
"""

from .messages import (
    SignalingMessage,
    SessionDescription,
    CandidatePayload,
    RoomCreated,
    JoinRoom,
    SessionOffer,
    SessionAnswer,
    NetworkCandidate,
    ChatMessage,
    parse_message,
    encode_message,
)
from .transport import SignalingChannel
from .config import signaling_config, SignalingConfig

__all__ = [
    "SignalingChannel",
    "SignalingMessage",
    "SessionDescription",
    "CandidatePayload",
    "RoomCreated",
    "JoinRoom",
    "SessionOffer",
    "SessionAnswer",
    "NetworkCandidate",
    "ChatMessage",
    "parse_message",
    "encode_message",
    "signaling_config",
    "SignalingConfig",
]
