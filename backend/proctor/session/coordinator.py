"""코디네이터(감독관) 세션.

감독관 쪽의 전체 흐름을 묶습니다: 시그널링 채널 → 연결 레지스트리(answerer)
→ 녹화 관리자 → 아카이브 내보내기.

Workflow:
    1. 릴레이 연결 후 RoomCreated 전송 (허용 명단 포함)
    2. 참가자의 JoinRoom / SessionOffer / NetworkCandidate 수신
    3. 레지스트리가 answer를 만들고 candidate를 순서대로 적용
    4. 스트림이 붙으면 녹화 시작 (start_all 또는 auto_record)
    5. end_session(): 녹화 중지 → 아카이브 생성 → 모든 연결 종료

Note:
    - 수신 메시지마다 태스크를 만들어 서로 다른 참가자의 협상이 교차 실행됨
    - 같은 참가자의 전이는 레지스트리의 엔트리 lock이 수신 순서대로 직렬화
    - 릴레이 재연결 시 RoomCreated를 다시 보내 룸을 복구
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Set

from ..recording.archive import ArchiveExporter, RecordingArchive
from ..recording.manager import RecordingManager
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
from ..webrtc.state import ConnectionEntry, NegotiationRole

logger = logging.getLogger(__name__)


class CoordinatorSession:
    """감독관 한 명의 시험 세션.

    Attributes:
        identity (str): 감독관 identity
        channel (SignalingChannel): 릴레이 채널
        registry (ConnectionRegistry): 참가자별 연결 레지스트리 (answerer)
        recorder (RecordingManager): 녹화 관리자
        exporter (ArchiveExporter): 아카이브 내보내기
        room (Optional[RoomCreated]): 현재 열린 룸
        joined (Set[str]): JoinRoom을 보낸 참가자 identity
        auto_record (bool): 녹화 중에 새로 붙은 스트림도 바로 녹화할지 여부
    """

    def __init__(
        self,
        identity: str,
        channel: Optional[SignalingChannel] = None,
        registry: Optional[ConnectionRegistry] = None,
        recorder: Optional[RecordingManager] = None,
        exporter: Optional[ArchiveExporter] = None,
        auto_record: bool = False,
    ):
        self.identity = identity
        self.channel = channel if channel is not None else SignalingChannel(identity)
        self.registry = registry if registry is not None else ConnectionRegistry(
            identity, send=self.channel.send, role=NegotiationRole.ANSWERER
        )
        self.recorder = recorder if recorder is not None else RecordingManager(self.registry)
        self.exporter = exporter if exporter is not None else ArchiveExporter()
        self.auto_record = auto_record

        self.room: Optional[RoomCreated] = None
        self.joined: Set[str] = set()
        self.chat_log: List[ChatMessage] = []
        self._recording = False
        self._tasks: Set[asyncio.Task] = set()

        self.channel.on_message(self.handle_message)
        self.channel.on_reconnect(self._on_reconnect)
        self.registry.on_stream_callback = self._on_stream

    async def start(self, endpoint: Optional[str] = None) -> None:
        """릴레이에 연결합니다. TransportError는 호출자에게 전달됩니다."""
        await self.channel.connect(endpoint)

    async def create_room(self, room_name: str, allowed_identities: Iterable[str]) -> RoomCreated:
        """룸을 열고 허용된 참가자들에게 알립니다."""
        self.room = RoomCreated(
            room_name=room_name,
            allowed_identities=list(allowed_identities),
            coordinator_identity=self.identity,
        )
        await self.channel.send(self.room)
        logger.info(
            f"[Session] 룸 생성: {room_name} "
            f"(허용 {len(self.room.allowed_identities)}명)"
        )
        return self.room

    async def send_chat(self, text: str) -> None:
        message = ChatMessage(
            sender=self.identity,
            text=text,
            room_name=self.room.room_name if self.room else None,
        )
        await self.channel.send(message)

    # ------------------------------------------------------------------
    # 수신 메시지
    # ------------------------------------------------------------------

    async def handle_message(self, message: SignalingMessage) -> None:
        """릴레이 메시지를 레지스트리로 전달합니다.

        offer/answer/candidate는 별도 태스크에서 처리되어 reader를 막지 않습니다.
        태스크는 수신 순서대로 생성되므로 같은 참가자의 처리 순서가 유지됩니다.
        허용 명단에 없는 참가자의 offer/candidate는 버립니다.
        """
        if isinstance(message, (SessionOffer, NetworkCandidate)) and not self.admits(message.sender):
            logger.warning(f"[Session] 허용되지 않은 참가자의 {message.TYPE} 무시: {message.sender}")
            return

        if isinstance(message, SessionOffer):
            self._spawn(self.registry.handle_offer(
                message.sender, message.offer, registration_id=message.registration_id
            ))
        elif isinstance(message, NetworkCandidate):
            self._spawn(self.registry.handle_candidate(message.sender, message.candidate))
        elif isinstance(message, SessionAnswer):
            logger.warning(f"[Session] 감독관은 answer를 받지 않음 (from={message.sender})")
        elif isinstance(message, JoinRoom):
            self._on_join(message)
        elif isinstance(message, ChatMessage):
            self.chat_log.append(message)
            logger.info(f"[Chat] {message.sender}: {message.text}")
        elif isinstance(message, RoomCreated):
            logger.debug(f"[Session] RoomCreated 에코 무시: {message.room_name}")

    def admits(self, identity: str) -> bool:
        """identity가 현재 룸의 허용 명단에 있는지 여부."""
        return self.room is not None and identity in self.room.allowed_identities

    def _on_join(self, message: JoinRoom) -> None:
        if self.room is None or message.room_name != self.room.room_name:
            logger.warning(f"[Session] 알 수 없는 룸 참가 요청 무시: {message.room_name} ({message.identity})")
            return
        if message.identity not in self.room.allowed_identities:
            logger.warning(f"[Session] 허용되지 않은 참가자 무시: {message.identity}")
            return
        self.joined.add(message.identity)
        logger.info(f"[Session] 참가자 입장: {message.identity} ({len(self.joined)}명)")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Session] 메시지 처리 오류: {task.exception()}", exc_info=task.exception())

    async def drain(self) -> None:
        """진행 중인 메시지 처리 태스크가 모두 끝날 때까지 기다립니다."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _on_stream(self, entry: ConnectionEntry) -> None:
        logger.info(f"[Session] {entry.display_name} 화면 수신 시작")
        if self.auto_record and self._recording:
            self._spawn(self.recorder.start(entry.identity))

    async def _on_reconnect(self) -> None:
        if self.room is not None:
            await self.channel.send(self.room)
            logger.info(f"[Session] 재연결 후 룸 재공지: {self.room.room_name}")

    # ------------------------------------------------------------------
    # 녹화 / 종료
    # ------------------------------------------------------------------

    async def start_recording(self) -> List[str]:
        self._recording = True
        return await self.recorder.start_all()

    async def stop_recording(self) -> None:
        self._recording = False
        await self.recorder.stop_all()

    def export(self) -> RecordingArchive:
        return self.exporter.export(self.recorder.sessions())

    async def end_session(self, save: bool = True) -> RecordingArchive:
        """녹화를 멈추고 아카이브를 만든 뒤 모든 연결을 닫습니다.

        Raises:
            ExportError: 아카이브 생성/저장 실패 (연결은 그래도 닫힘)
        """
        await self.stop_recording()
        try:
            archive = self.export()
            if save:
                self.exporter.save(archive)
        finally:
            await self.registry.close_all()
            self.room = None
            self.joined.clear()
            logger.info("[Session] 세션 종료")
        return archive

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.registry.close_all(wait=True)
        await self.channel.disconnect()
