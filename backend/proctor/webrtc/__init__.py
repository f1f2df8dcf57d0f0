"""WebRTC 모듈.

참가자별 피어 연결 레지스트리와 협상 상태 머신을 제공합니다.

Classes:
    ConnectionRegistry: identity별 RTCPeerConnection 소유 및 offer/answer/candidate 처리
    ConnectionEntry: 참가자 한 명과의 연결 상태
    NegotiationPhase: 협상 단계
    NegotiationRole: 협상 역할 (offerer/answerer)

Config:
    ice_config: ICE 서버 설정
"""

from .state import ConnectionEntry, NegotiationPhase, NegotiationRole
from .peer_manager import ConnectionRegistry
from .config import ice_config, ICEServerConfig

__all__ = [
    # Classes
    "ConnectionRegistry",
    "ConnectionEntry",
    "NegotiationPhase",
    "NegotiationRole",
    # Config
    "ice_config",
    "ICEServerConfig",
]
