"""시그널링 메시지 모델.

릴레이가 전달하는 세션 설정 메시지를 pydantic 모델로 정의합니다.
메시지는 영구 저장되지 않으며 미디어를 포함하지 않습니다.

Wire Format:
    모든 메시지는 다음 봉투(envelope) 형태로 전송됩니다::

        {"type": "session_offer", "data": {"from": "...", "to": "...", ...}}

    payload 필드명은 camelCase(roomName, registrationId 등)이며,
    Python 속성은 snake_case를 사용합니다.

Messages:
    RoomCreated: 코디네이터 → 릴레이 → 허용된 참가자
    JoinRoom: 참가자 → 릴레이 → 코디네이터
    SessionOffer: 참가자 → 릴레이 → 코디네이터
    SessionAnswer: 코디네이터 → 릴레이 → 참가자
    NetworkCandidate: 양방향, 상대 identity로 라우팅
    ChatMessage: 양방향, 룸 전체로 브로드캐스트

Examples:
    >>> msg = parse_message('{"type": "join_room", "data": {"roomName": "exam-1", "identity": "UNI001"}}')
    >>> msg.identity
    'UNI001'
    >>> encode_message(msg)
    '{"type": "join_room", "data": {"roomName": "exam-1", "identity": "UNI001"}}'
"""
import json
from typing import ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import MessageFormatError


class SessionDescription(BaseModel):
    """SDP 세션 기술(offer 또는 answer)."""

    sdp: str
    type: Literal["offer", "answer"]


class CandidatePayload(BaseModel):
    """ICE candidate 정보 (브라우저 RTCIceCandidateInit 형태)."""

    model_config = ConfigDict(populate_by_name=True)

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


class SignalingMessage(BaseModel):
    """모든 시그널링 메시지의 기반 클래스."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    TYPE: ClassVar[str] = ""

    def payload(self) -> dict:
        """봉투의 data 부분 (camelCase, None 필드 제외)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def envelope(self) -> dict:
        return {"type": self.TYPE, "data": self.payload()}


class RoomCreated(SignalingMessage):
    TYPE: ClassVar[str] = "room_created"

    room_name: str = Field(alias="roomName")
    allowed_identities: List[str] = Field(default_factory=list, alias="allowedIdentities")
    coordinator_identity: str = Field(alias="coordinatorIdentity")


class JoinRoom(SignalingMessage):
    TYPE: ClassVar[str] = "join_room"

    room_name: str = Field(alias="roomName")
    identity: str


class SessionOffer(SignalingMessage):
    TYPE: ClassVar[str] = "session_offer"

    sender: str = Field(alias="from")
    to: str
    offer: SessionDescription
    registration_id: Optional[str] = Field(default=None, alias="registrationId")


class SessionAnswer(SignalingMessage):
    TYPE: ClassVar[str] = "session_answer"

    to: str
    answer: SessionDescription
    # 릴레이가 보낸 쪽 identity로 채움
    sender: Optional[str] = Field(default=None, alias="from")


class NetworkCandidate(SignalingMessage):
    TYPE: ClassVar[str] = "network_candidate"

    sender: str = Field(alias="from")
    to: str
    candidate: CandidatePayload


class ChatMessage(SignalingMessage):
    TYPE: ClassVar[str] = "chat_message"

    sender: str
    text: str
    room_name: Optional[str] = Field(default=None, alias="roomName")


AnyMessage = Union[RoomCreated, JoinRoom, SessionOffer, SessionAnswer, NetworkCandidate, ChatMessage]

MESSAGE_TYPES: Dict[str, Type[SignalingMessage]] = {
    cls.TYPE: cls
    for cls in (RoomCreated, JoinRoom, SessionOffer, SessionAnswer, NetworkCandidate, ChatMessage)
}


def parse_message(raw: Union[str, bytes, dict]) -> AnyMessage:
    """JSON 문자열 또는 dict를 메시지 모델로 변환합니다.

    Args:
        raw: ``{"type": ..., "data": {...}}`` 형태의 JSON 또는 dict

    Returns:
        AnyMessage: type 태그에 해당하는 메시지 모델

    Raises:
        MessageFormatError: JSON이 아니거나, 알 수 없는 type이거나,
            payload 검증에 실패한 경우
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MessageFormatError(f"invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MessageFormatError("message must be a JSON object")

    message_type = raw.get("type")
    cls = MESSAGE_TYPES.get(message_type)
    if cls is None:
        raise MessageFormatError(f"unknown message type: {message_type!r}")

    data = raw.get("data")
    if not isinstance(data, dict):
        raise MessageFormatError(f"{message_type}: 'data' must be an object")

    try:
        return cls.model_validate(data)
    except ValidationError as e:
        raise MessageFormatError(f"{message_type}: {e.error_count()} invalid field(s)") from e


def encode_message(message: SignalingMessage) -> str:
    """메시지 모델을 전송용 JSON 문자열로 변환합니다."""
    return json.dumps(message.envelope(), ensure_ascii=False)
