"""참가자(수험생) 세션.

참가자는 offerer 역할로, 자신이 허용 명단에 포함된 RoomCreated를 받으면
룸에 참가하고 화면 스트림을 코디네이터에게 offer합니다.

Workflow:
    1. 릴레이 연결
    2. RoomCreated 수신 → allowedIdentities에 자신이 있으면 JoinRoom 전송
    3. start_stream(): 화면 캡처 → offer 생성 → SessionOffer 전송
    4. SessionAnswer / NetworkCandidate 적용 → connected
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Union

from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from ..errors import MediaAcquisitionError, NegotiationError
from ..signaling.messages import (
    ChatMessage,
    JoinRoom,
    NetworkCandidate,
    RoomCreated,
    SessionAnswer,
    SessionOffer,
    SignalingMessage,
)
from ..signaling.transport import SignalingChannel
from ..webrtc.peer_manager import ConnectionRegistry
from ..webrtc.state import NegotiationPhase, NegotiationRole

logger = logging.getLogger(__name__)

TrackSource = Callable[[], Union[Awaitable, object]]


def media_player_source(file: str, format: Optional[str] = None, options: Optional[dict] = None) -> TrackSource:
    """MediaPlayer 기반 화면/카메라 캡처 소스를 만듭니다.

    Examples:
        >>> media_player_source(":0.0", format="x11grab", options={"video_size": "1280x720"})
        >>> media_player_source("sample.mp4")
    """
    def open_track():
        player = MediaPlayer(file, format=format, options=options or {})
        if player.video is None:
            raise MediaAcquisitionError(f"no video track in {file}")
        return player.video

    return open_track


class ParticipantSession:
    """수험생 한 명의 스트리밍 세션.

    Attributes:
        identity (str): 참가자 identity
        registration_id (Optional[str]): 등록 번호 (offer에 포함)
        room (Optional[RoomCreated]): 참가한 룸
        track: 송신 중인 로컬 화면 트랙
    """

    def __init__(
        self,
        identity: str,
        registration_id: Optional[str] = None,
        channel: Optional[SignalingChannel] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        self.identity = identity
        self.registration_id = registration_id
        self.channel = channel if channel is not None else SignalingChannel(identity)
        self.registry = registry if registry is not None else ConnectionRegistry(
            identity,
            send=self.channel.send,
            role=NegotiationRole.OFFERER,
            registration_id=registration_id,
        )
        self.room: Optional[RoomCreated] = None
        self.track = None
        self.chat_log: List[ChatMessage] = []
        self.joined = asyncio.Event()

        self.channel.on_message(self.handle_message)
        self.channel.on_reconnect(self._on_reconnect)

    @property
    def coordinator_identity(self) -> Optional[str]:
        return self.room.coordinator_identity if self.room else None

    @property
    def connected(self) -> bool:
        entry = self.registry.get(self.coordinator_identity) if self.room else None
        return entry is not None and entry.phase is NegotiationPhase.CONNECTED

    async def start(self, endpoint: Optional[str] = None) -> None:
        await self.channel.connect(endpoint)

    async def handle_message(self, message: SignalingMessage) -> None:
        if isinstance(message, RoomCreated):
            await self._on_room_created(message)
        elif isinstance(message, (SessionAnswer, NetworkCandidate)):
            sender = message.sender or self.coordinator_identity
            if sender is None or sender != self.coordinator_identity:
                logger.warning(f"[Session] 감독관이 아닌 상대의 {message.TYPE} 무시: {sender}")
                return
            if isinstance(message, SessionAnswer):
                await self.registry.handle_answer(sender, message.answer)
            else:
                await self.registry.handle_candidate(sender, message.candidate)
        elif isinstance(message, ChatMessage):
            self.chat_log.append(message)
            logger.info(f"[Chat] {message.sender}: {message.text}")
        elif isinstance(message, SessionOffer):
            logger.warning(f"[Session] 참가자는 offer를 받지 않음 (from={message.sender})")

    async def _on_room_created(self, message: RoomCreated) -> None:
        if self.identity not in message.allowed_identities:
            logger.info(f"[Session] 허용 명단에 없는 룸 무시: {message.room_name}")
            return
        rejoin = self.room is not None and self.room.room_name == message.room_name

        self.room = message
        self.joined.set()
        # 감독관 재연결로 릴레이의 룸이 다시 만들어진 경우에도 참가를 다시 알림
        await self.channel.send(JoinRoom(room_name=message.room_name, identity=self.identity))
        if rejoin:
            logger.debug(f"[Session] 룸 재공지, 참가 재전송: {message.room_name}")
        else:
            logger.info(f"[Session] 룸 참가: {message.room_name} (감독관={message.coordinator_identity})")

    async def start_stream(self, source: TrackSource) -> bool:
        """화면을 캡처하여 감독관에게 offer합니다.

        Args:
            source: 로컬 비디오 트랙을 반환하는 함수 (코루틴 함수도 가능)

        Raises:
            NegotiationError: 아직 룸에 참가하지 않은 경우
            MediaAcquisitionError: 캡처 장치/권한 문제로 트랙을 얻지 못한 경우
        """
        if self.room is None:
            raise NegotiationError("no room joined yet")

        try:
            track = source()
            if hasattr(track, "__await__"):
                track = await track
        except MediaAcquisitionError:
            raise
        except (OSError, FFmpegError, ValueError) as e:
            raise MediaAcquisitionError(f"screen capture failed: {e}") from e

        self.track = track
        return await self.registry.create_offer(self.coordinator_identity, track=track)

    async def send_chat(self, text: str) -> None:
        await self.channel.send(ChatMessage(
            sender=self.identity,
            text=text,
            room_name=self.room.room_name if self.room else None,
        ))

    async def _on_reconnect(self) -> None:
        if self.room is None or self.track is None or self.connected:
            return
        # 끊긴 사이 잃어버린 answer는 같은 offer를 다시 보내 복구
        logger.info(f"[Session] 재연결 후 offer 재전송: {self.coordinator_identity}")
        await self.registry.resend_offer(self.coordinator_identity)

    async def close(self) -> None:
        await self.registry.close_all(wait=True)
        await self.channel.disconnect()
