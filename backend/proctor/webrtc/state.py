"""연결 엔트리와 협상 단계 정의.

ConnectionEntry는 참가자 identity당 하나씩 존재하며, ConnectionRegistry만
생성/변경/삭제할 수 있습니다. 다른 모듈은 읽기만 합니다.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Optional

from ..signaling.messages import CandidatePayload


class NegotiationRole(str, Enum):
    """협상 역할."""

    # 코디네이터 쪽: 여러 참가자의 offer를 받아 answer
    ANSWERER = "answerer"
    # 참가자 쪽: 코디네이터 한 명에게 offer
    OFFERER = "offerer"


class NegotiationPhase(str, Enum):
    """협상 단계.

    answerer: new → have-remote-offer → have-local-answer → connected → closed
    offerer:  new → have-local-offer → have-remote-answer → connected → closed
    """

    NEW = "new"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    HAVE_LOCAL_ANSWER = "have-local-answer"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_ANSWER = "have-remote-answer"
    CONNECTED = "connected"
    CLOSED = "closed"


# remote description이 적용된 단계들 (candidate를 바로 적용할 수 있음)
REMOTE_APPLIED_PHASES = frozenset({
    NegotiationPhase.HAVE_REMOTE_OFFER,
    NegotiationPhase.HAVE_LOCAL_ANSWER,
    NegotiationPhase.HAVE_REMOTE_ANSWER,
    NegotiationPhase.CONNECTED,
})

# connected로 넘어갈 수 있는 단계들
NEGOTIATED_PHASES = frozenset({
    NegotiationPhase.HAVE_LOCAL_ANSWER,
    NegotiationPhase.HAVE_REMOTE_ANSWER,
})


@dataclass(eq=False)
class ConnectionEntry:
    """참가자 한 명과의 실시간 세션 상태.

    Attributes:
        identity (str): 상대 참가자 identity (레지스트리 키)
        pc (Any): RTCPeerConnection (테스트에서는 대체 구현)
        role (NegotiationRole): 이 쪽의 협상 역할
        phase (NegotiationPhase): 현재 협상 단계
        pending_candidates (Deque[CandidatePayload]): remote description 적용 전에 도착한 candidate (FIFO)
        stream (Optional[Any]): 수신 중인 미디어 트랙 (미디어 도착 후 설정)
        registration_id (Optional[str]): 사람이 읽을 수 있는 등록 번호 (offer에 포함)
        remote_offer_sdp (Optional[str]): 적용한 remote offer SDP (중복 offer 판별용)
        local_description (Optional[Any]): 마지막으로 적용한 local description
        lock (asyncio.Lock): 같은 엔트리의 전이를 수신 순서대로 직렬화
    """
    identity: str
    pc: Any
    role: NegotiationRole
    phase: NegotiationPhase = NegotiationPhase.NEW
    pending_candidates: Deque[CandidatePayload] = field(default_factory=deque)
    stream: Optional[Any] = None
    registration_id: Optional[str] = None
    remote_offer_sdp: Optional[str] = None
    local_description: Optional[Any] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def remote_applied(self) -> bool:
        """remote description이 적용되었는지 여부."""
        return self.phase in REMOTE_APPLIED_PHASES

    @property
    def closed(self) -> bool:
        return self.phase is NegotiationPhase.CLOSED

    @property
    def display_name(self) -> str:
        """내보내기 파일명 등에 쓰는 이름 (등록 번호 우선)."""
        return self.registration_id or self.identity
