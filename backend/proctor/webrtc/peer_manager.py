"""WebRTC 연결 레지스트리 및 협상 상태 머신.

참가자 identity마다 하나의 RTCPeerConnection을 소유하고, offer/answer/candidate
교환을 단계(phase) 기반 상태 머신으로 처리합니다.

주요 기능:
    - identity별 연결 엔트리 생성/조회/종료 (중복 세션 방지)
    - offer → answer 생성 (코디네이터, answerer 역할)
    - offer 생성 → answer 적용 (참가자, offerer 역할)
    - remote description 적용 전 도착한 ICE candidate 버퍼링 및 순서대로 적용
    - 로컬 ICE candidate를 상대 identity로 전송
    - 수신 미디어 트랙을 엔트리에 연결

Architecture:
    - 엔트리 맵: Dict[str, ConnectionEntry] - identity → 엔트리
    - create_or_get()은 await 없이 동작하므로 이벤트 루프 안에서 원자적
    - 같은 엔트리의 전이는 엔트리 lock으로 수신 순서대로 직렬화
    - 서로 다른 identity의 전이는 자유롭게 교차 실행됨

Candidate Ordering:
    1. 엔트리가 없거나 remote description이 없거나 전이가 진행 중이면 버퍼에 추가
    2. 그 외에는 즉시 적용
    3. remote description 적용 직후와 모든 전이 종료 시 버퍼를 수신 순서대로 비움
    4. 적용에 실패한 candidate는 경고 후 건너뛰고 나머지는 계속 적용

Examples:
    >>> registry = ConnectionRegistry("teacher-01", send=channel.send)
    >>> await registry.handle_offer("UNI001", {"sdp": "...", "type": "offer"})
    >>> await registry.handle_candidate("UNI001", {"candidate": "candidate:...", "sdpMid": "0"})
    >>> await registry.close("UNI001")

See Also:
    state.py: ConnectionEntry, NegotiationPhase
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from aiortc import RTCIceCandidate, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaRelay
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from pydantic import ValidationError

from .config import ice_config
from .state import ConnectionEntry, NegotiationPhase, NegotiationRole, NEGOTIATED_PHASES
from ..errors import NegotiationError, TransportError
from ..signaling.messages import (
    CandidatePayload,
    NetworkCandidate,
    SessionAnswer,
    SessionDescription,
    SessionOffer,
    SignalingMessage,
)

logger = logging.getLogger(__name__)

# aiortc가 잘못된 SDP / 상태에서 던지는 예외
_RTC_ERRORS = (ValueError, InvalidStateError, InvalidAccessError)


def parse_description(value: Union[SessionDescription, dict], expected: str) -> SessionDescription:
    """offer/answer payload를 SessionDescription으로 변환합니다.

    Raises:
        NegotiationError: 형식이 잘못되었거나 type이 기대와 다른 경우
    """
    if not isinstance(value, SessionDescription):
        try:
            value = SessionDescription.model_validate(value)
        except ValidationError as e:
            raise NegotiationError(f"malformed {expected}: {e.error_count()} invalid field(s)") from e
    if value.type != expected:
        raise NegotiationError(f"expected {expected}, got {value.type}")
    return value


def parse_candidate(value: Union[CandidatePayload, dict]) -> CandidatePayload:
    """candidate payload를 CandidatePayload로 변환합니다."""
    if isinstance(value, CandidatePayload):
        return value
    try:
        return CandidatePayload.model_validate(value)
    except ValidationError as e:
        raise NegotiationError(f"malformed candidate: {e.error_count()} invalid field(s)") from e


def candidate_from_payload(payload: CandidatePayload) -> Optional[RTCIceCandidate]:
    """브라우저 형식 candidate를 aiortc RTCIceCandidate로 변환합니다.

    Returns:
        Optional[RTCIceCandidate]: end-of-candidates(빈 문자열)면 None

    Raises:
        NegotiationError: candidate 문자열을 해석할 수 없는 경우
    """
    candidate_str = payload.candidate.strip()
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[len("candidate:"):]
    if not candidate_str:
        return None

    try:
        ice_candidate = candidate_from_sdp(candidate_str)
    except (AssertionError, ValueError, IndexError) as e:
        raise NegotiationError(f"unparseable candidate: {payload.candidate!r}") from e

    ice_candidate.sdpMid = payload.sdp_mid
    ice_candidate.sdpMLineIndex = payload.sdp_mline_index
    return ice_candidate


def candidate_to_payload(candidate: RTCIceCandidate) -> CandidatePayload:
    """aiortc RTCIceCandidate를 브라우저 형식 candidate로 변환합니다."""
    return CandidatePayload(
        candidate="candidate:" + candidate_to_sdp(candidate),
        sdp_mid=candidate.sdpMid,
        sdp_mline_index=candidate.sdpMLineIndex,
    )


class ConnectionRegistry:
    """참가자별 실시간 세션을 소유하는 레지스트리.

    엔트리를 만들거나 없앨 수 있는 유일한 객체입니다. 엔트리의 단계 전이도
    이 클래스의 메서드를 통해서만 일어납니다.

    Attributes:
        identity (str): 이 레지스트리 소유자의 identity (candidate 발신자 태그)
        role (NegotiationRole): 이 쪽의 협상 역할
        relay (MediaRelay): 수신 트랙을 여러 소비자(녹화 등)에게 나눠주는 릴레이
        registration_id (Optional[str]): offerer 역할일 때 offer에 실어 보낼 등록 번호
        on_stream_callback: 엔트리에 스트림이 연결되면 호출되는 async 콜백
    """

    def __init__(
        self,
        identity: str,
        send: Callable[[SignalingMessage], Awaitable[None]],
        role: NegotiationRole = NegotiationRole.ANSWERER,
        peer_factory: Optional[Callable[[], Any]] = None,
        relay: Optional[MediaRelay] = None,
        registration_id: Optional[str] = None,
    ):
        self.identity = identity
        self.role = role
        self.registration_id = registration_id
        self.relay = relay if relay is not None else MediaRelay()
        self._send = send
        self._peer_factory = peer_factory or self._default_peer_factory

        # identity -> ConnectionEntry
        self._entries: Dict[str, ConnectionEntry] = {}

        # Background teardown tasks (kept to prevent garbage collection)
        self._release_tasks: Set[asyncio.Task] = set()

        self.on_stream_callback: Optional[Callable[[ConnectionEntry], Awaitable[None]]] = None

    @staticmethod
    def _default_peer_factory() -> RTCPeerConnection:
        return RTCPeerConnection(configuration=ice_config.rtc_configuration())

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def create_or_get(self, identity: str) -> ConnectionEntry:
        """identity의 엔트리를 반환하고, 없으면 new 단계로 생성합니다.

        await 지점이 없으므로 같은 identity로 동시에 호출되어도 항상 같은
        엔트리와 하나의 RTCPeerConnection만 만들어집니다.
        """
        entry = self._entries.get(identity)
        if entry is not None:
            return entry

        entry = ConnectionEntry(identity=identity, pc=self._peer_factory(), role=self.role)
        self._entries[identity] = entry
        self._register_handlers(entry)
        logger.info(f"[WebRTC] 엔트리 생성: {identity} (role={self.role.value}, 총 {len(self._entries)}개)")
        return entry

    def get(self, identity: str) -> Optional[ConnectionEntry]:
        return self._entries.get(identity)

    def entries(self) -> List[ConnectionEntry]:
        return list(self._entries.values())

    def streams(self) -> List[ConnectionEntry]:
        """스트림이 연결된 엔트리 목록."""
        return [entry for entry in self._entries.values() if entry.stream is not None]

    def snapshot(self) -> List[dict]:
        """표시 계층용 읽기 전용 상태 목록."""
        return [
            {
                "identity": entry.identity,
                "registration_id": entry.registration_id,
                "phase": entry.phase.value,
                "has_stream": entry.stream is not None,
                "pending_candidates": len(entry.pending_candidates),
            }
            for entry in self._entries.values()
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    # ------------------------------------------------------------------
    # 이벤트 핸들러
    # ------------------------------------------------------------------

    def _register_handlers(self, entry: ConnectionEntry) -> None:
        pc = entry.pc

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate is None or entry.closed:
                return
            message = NetworkCandidate(
                sender=self.identity,
                to=entry.identity,
                candidate=candidate_to_payload(candidate),
            )
            await self._safe_send(message)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            state = pc.connectionState
            logger.info(f"[WebRTC] {entry.identity} 연결 상태: {state}")
            if state == "connected" and entry.phase in NEGOTIATED_PHASES:
                self._advance(entry, NegotiationPhase.CONNECTED)
            elif state == "failed":
                await self._close_entry(entry)

        @pc.on("track")
        async def on_track(track):
            await self._attach_stream(entry, track)

    async def _attach_stream(self, entry: ConnectionEntry, track) -> None:
        if entry.closed:
            return
        if track.kind != "video":
            logger.info(f"[WebRTC] {entry.identity} {track.kind} 트랙 무시 (화면 공유는 video만 사용)")
            return

        entry.stream = track
        logger.info(f"[WebRTC] {entry.identity} 스트림 연결됨")

        @track.on("ended")
        async def on_ended():
            logger.info(f"[WebRTC] {entry.identity} {track.kind} 트랙 종료")

        if self.on_stream_callback:
            await self.on_stream_callback(entry)

    # ------------------------------------------------------------------
    # 상태 전이
    # ------------------------------------------------------------------

    def _advance(self, entry: ConnectionEntry, phase: NegotiationPhase) -> None:
        previous = entry.phase
        entry.phase = phase
        logger.info(f"[WebRTC] {entry.identity} 단계: {previous.value} -> {phase.value}")

    @asynccontextmanager
    async def _transition(self, entry: ConnectionEntry):
        """엔트리 lock 안에서 전이를 실행하고, 끝나면 버퍼된 candidate를 적용합니다."""
        async with entry.lock:
            yield
            if entry.remote_applied:
                await self._drain(entry)

    async def _safe_send(self, message: SignalingMessage) -> bool:
        try:
            await self._send(message)
        except TransportError as e:
            logger.warning(f"[WebRTC] {message.TYPE} 전송 실패 (재연결 후 재시그널링 필요): {e}")
            return False
        return True

    async def _send_answer(self, entry: ConnectionEntry) -> bool:
        description = entry.local_description
        return await self._safe_send(SessionAnswer(
            to=entry.identity,
            sender=self.identity,
            answer=SessionDescription(sdp=description.sdp, type="answer"),
        ))

    async def handle_offer(
        self,
        identity: str,
        offer: Union[SessionDescription, dict],
        registration_id: Optional[str] = None,
    ) -> bool:
        """참가자의 offer를 적용하고 answer를 보냅니다 (answerer 역할).

        Args:
            identity: offer를 보낸 참가자 identity
            offer: SDP offer ({"sdp": ..., "type": "offer"})
            registration_id: 참가자의 등록 번호 (내보내기 파일명에 사용)

        Returns:
            bool: answer까지 적용되었으면 True. 단계가 맞지 않거나 실패하면 False

        Workflow:
            1. 엔트리 생성 또는 조회
            2. new 단계가 아니면 경고 후 무시 (같은 offer면 기존 answer 재전송)
            3. Remote Description 설정 → have-remote-offer, 버퍼 적용
            4. Answer 생성 및 Local Description 설정 → have-local-answer
            5. SessionAnswer 전송
        """
        try:
            description = parse_description(offer, "offer")
        except NegotiationError as e:
            logger.warning(f"[WebRTC] {identity} offer 무시: {e}")
            return False

        entry = self.create_or_get(identity)
        if registration_id:
            entry.registration_id = registration_id

        async with self._transition(entry):
            if entry.phase is not NegotiationPhase.NEW:
                logger.warning(f"[WebRTC] {identity} 중복 offer 무시 (단계={entry.phase.value})")
                if entry.remote_offer_sdp == description.sdp and entry.local_description is not None:
                    # lost answer recovery after relay reconnect
                    await self._send_answer(entry)
                return False

            try:
                await entry.pc.setRemoteDescription(
                    RTCSessionDescription(sdp=description.sdp, type=description.type)
                )
            except _RTC_ERRORS as e:
                logger.warning(f"[WebRTC] {identity} remote offer 설정 실패: {e}")
                return False
            if entry.closed:
                return False

            entry.remote_offer_sdp = description.sdp
            self._advance(entry, NegotiationPhase.HAVE_REMOTE_OFFER)
            await self._drain(entry)

            try:
                answer = await entry.pc.createAnswer()
                await entry.pc.setLocalDescription(answer)
            except _RTC_ERRORS as e:
                logger.warning(f"[WebRTC] {identity} answer 생성/설정 실패: {e}")
                return False
            if entry.closed:
                return False

            entry.local_description = entry.pc.localDescription
            self._advance(entry, NegotiationPhase.HAVE_LOCAL_ANSWER)
            await self._send_answer(entry)
        return True

    async def create_offer(self, identity: str, track=None) -> bool:
        """상대에게 보낼 offer를 만들고 전송합니다 (offerer 역할).

        Args:
            identity: 상대(코디네이터) identity
            track: 송신할 로컬 미디어 트랙 (offer 생성 전에 추가됨)

        Returns:
            bool: offer를 적용했으면 True
        """
        entry = self.create_or_get(identity)
        async with self._transition(entry):
            if entry.phase is not NegotiationPhase.NEW:
                logger.warning(f"[WebRTC] {identity} offer 생성 무시 (단계={entry.phase.value})")
                return False

            if track is not None:
                entry.pc.addTrack(track)

            try:
                offer = await entry.pc.createOffer()
                await entry.pc.setLocalDescription(offer)
            except _RTC_ERRORS as e:
                logger.warning(f"[WebRTC] {identity} offer 생성/설정 실패: {e}")
                return False
            if entry.closed:
                return False

            entry.local_description = entry.pc.localDescription
            self._advance(entry, NegotiationPhase.HAVE_LOCAL_OFFER)
            await self._send_offer(entry)
        return True

    async def _send_offer(self, entry: ConnectionEntry) -> bool:
        return await self._safe_send(SessionOffer(
            sender=self.identity,
            to=entry.identity,
            offer=SessionDescription(sdp=entry.local_description.sdp, type="offer"),
            registration_id=self.registration_id,
        ))

    async def resend_offer(self, identity: str) -> bool:
        """answer를 아직 받지 못한 offer를 그대로 다시 보냅니다.

        릴레이 재연결 후 사용합니다. 상대는 같은 offer를 받으면 이전 answer를
        다시 보내므로 양쪽 단계가 꼬이지 않습니다.
        """
        entry = self._entries.get(identity)
        if entry is None or entry.phase is not NegotiationPhase.HAVE_LOCAL_OFFER:
            return False
        async with entry.lock:
            if entry.phase is not NegotiationPhase.HAVE_LOCAL_OFFER:
                return False
            return await self._send_offer(entry)

    async def handle_answer(self, identity: str, answer: Union[SessionDescription, dict]) -> bool:
        """상대의 answer를 적용합니다 (offerer 역할).

        have-local-offer 단계에서만 유효합니다. 그 외 단계의 answer
        (중복/지연된 answer)는 로그만 남기고 무시합니다.
        """
        try:
            description = parse_description(answer, "answer")
        except NegotiationError as e:
            logger.warning(f"[WebRTC] {identity} answer 무시: {e}")
            return False

        entry = self._entries.get(identity)
        if entry is None:
            logger.warning(f"[WebRTC] {identity} answer 무시: 엔트리 없음")
            return False

        async with self._transition(entry):
            if entry.phase is not NegotiationPhase.HAVE_LOCAL_OFFER:
                logger.info(f"[WebRTC] {identity} answer 무시 (단계={entry.phase.value})")
                return False

            try:
                await entry.pc.setRemoteDescription(
                    RTCSessionDescription(sdp=description.sdp, type=description.type)
                )
            except _RTC_ERRORS as e:
                logger.warning(f"[WebRTC] {identity} remote answer 설정 실패: {e}")
                return False
            if entry.closed:
                return False

            self._advance(entry, NegotiationPhase.HAVE_REMOTE_ANSWER)
            await self._drain(entry)
        return True

    async def handle_candidate(self, identity: str, candidate: Union[CandidatePayload, dict]) -> bool:
        """상대의 ICE candidate를 적용하거나 버퍼에 넣습니다.

        close() 이후 도착한 candidate는 new 단계의 새 엔트리에 버퍼되어,
        재접속한 참가자의 다음 offer에서 적용됩니다. 이 엔트리는 close_all()에서 정리됩니다.

        Returns:
            bool: 즉시 적용되었으면 True, 버퍼에 넣었거나 실패했으면 False
        """
        try:
            payload = parse_candidate(candidate)
        except NegotiationError as e:
            logger.warning(f"[WebRTC] {identity} candidate 무시: {e}")
            return False

        entry = self.create_or_get(identity)
        if entry.lock.locked() or not entry.remote_applied:
            entry.pending_candidates.append(payload)
            logger.debug(
                f"[WebRTC] {identity} candidate 버퍼링 "
                f"(단계={entry.phase.value}, 대기={len(entry.pending_candidates)})"
            )
            return False

        async with self._transition(entry):
            return await self._apply_candidate(entry, payload)

    async def _apply_candidate(self, entry: ConnectionEntry, payload: CandidatePayload) -> bool:
        try:
            ice_candidate = candidate_from_payload(payload)
            if ice_candidate is None:
                logger.debug(f"[WebRTC] {entry.identity} end-of-candidates")
                return False
            await entry.pc.addIceCandidate(ice_candidate)
        except (NegotiationError,) + _RTC_ERRORS as e:
            logger.warning(f"[WebRTC] {entry.identity} candidate 적용 실패, 건너뜀: {e}")
            return False
        return True

    async def _drain(self, entry: ConnectionEntry) -> int:
        """버퍼된 candidate를 수신 순서대로 한 번씩 적용합니다."""
        applied = 0
        while entry.pending_candidates and not entry.closed:
            payload = entry.pending_candidates.popleft()
            if await self._apply_candidate(entry, payload):
                applied += 1
        if applied:
            logger.info(f"[WebRTC] {entry.identity} 버퍼 candidate {applied}개 적용")
        return applied

    # ------------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------------

    def _retire(self, entry: ConnectionEntry) -> bool:
        """엔트리를 closed로 표시하고 맵에서 제거합니다. 이미 닫혔으면 False."""
        if entry.closed:
            return False
        self._advance(entry, NegotiationPhase.CLOSED)
        if self._entries.get(entry.identity) is entry:
            del self._entries[entry.identity]
        entry.pending_candidates.clear()
        entry.stream = None
        return True

    async def _close_entry(self, entry: ConnectionEntry) -> bool:
        if not self._retire(entry):
            return False
        await entry.pc.close()
        logger.info(f"[WebRTC] {entry.identity} 연결 종료")
        return True

    async def close(self, identity: str) -> bool:
        """엔트리를 종료하고 레지스트리에서 제거합니다.

        여러 번 호출해도 안전하며, RTCPeerConnection은 한 번만 닫힙니다.

        Returns:
            bool: 이번 호출로 실제 종료되었으면 True
        """
        entry = self._entries.get(identity)
        if entry is None:
            return False
        return await self._close_entry(entry)

    async def close_all(self, wait: bool = False) -> List[str]:
        """모든 엔트리를 종료합니다.

        엔트리는 즉시 closed로 표시되고 맵에서 제거되며, RTCPeerConnection
        종료는 백그라운드 태스크로 실행됩니다.

        Args:
            wait: True면 진행 중인 모든 종료 작업이 끝날 때까지 기다림

        Returns:
            List[str]: 종료된 identity 목록
        """
        retired = [entry for entry in list(self._entries.values()) if self._retire(entry)]
        for entry in retired:
            task = asyncio.create_task(entry.pc.close())
            self._release_tasks.add(task)
            task.add_done_callback(self._release_tasks.discard)

        logger.info(f"[WebRTC] 전체 연결 종료 요청: {len(retired)}개")
        # 이전 close_all()에서 시작된 종료 작업도 함께 기다림
        if wait and self._release_tasks:
            await asyncio.gather(*list(self._release_tasks))
        return [entry.identity for entry in retired]
