"""참가자 화면 녹화 관리 모듈.

ConnectionRegistry에 연결된 스트림마다 독립적인 캡처 파이프라인을 돌려
청크를 쌓고, 종료 시 결과물을 확정합니다.

주요 기능:
    - 참가자별 녹화 시작/중지 (start, stop)
    - 연결된 모든 스트림 일괄 시작/중지 (start_all, stop_all)
    - 품질 티어 기반 비트레이트 선택 (적응형 아님)
    - 스트림별 장애 격리 (한 스트림 실패가 다른 녹화에 영향 없음)

Track End Policy:
    - 레지스트리가 엔트리를 닫아서 트랙이 끝난 경우: 부분 결과를 stopped로 확정
    - 그 외 녹화 중 트랙이 끊긴 경우: RecordingError로 표시, 내보내기에서 제외

Examples:
    >>> recorder = RecordingManager(registry)
    >>> started = await recorder.start_all()
    >>> await recorder.stop_all()
    >>> archive = ArchiveExporter().export(recorder.sessions())
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .capture import WebmChunkCapture
from .config import QUALITY_TIERS, recording_config
from .session import RecordingSession, RecordingState
from ..errors import RecordingError
from ..webrtc.state import ConnectionEntry

logger = logging.getLogger(__name__)

CaptureFactory = Callable[[Any, int, float], Any]

DEFAULT_TIER = "standard"


def select_bitrate(target: Optional[int] = None) -> int:
    """목표 비트레이트 이하의 가장 높은 품질 티어를 선택합니다.

    Args:
        target: 목표 비트레이트 (bps). None이면 standard 티어

    Returns:
        int: 선택된 티어의 비트레이트. 모든 티어보다 낮으면 가장 낮은 티어
    """
    if target is None:
        return QUALITY_TIERS[DEFAULT_TIER]
    tiers = sorted(QUALITY_TIERS.values())
    eligible = [bitrate for bitrate in tiers if bitrate <= target]
    return eligible[-1] if eligible else tiers[0]


class RecordingManager:
    """참가자별 녹화 세션 관리자.

    Attributes:
        registry: 스트림을 제공하는 ConnectionRegistry
        timeslice (float): 청크 캡처 주기 (초)
        settle_delay (float): stop_all() 후 flush 대기 시간 (초)
        bitrate (int): 선택된 캡처 비트레이트 (bps)
    """

    def __init__(
        self,
        registry,
        capture_factory: Optional[CaptureFactory] = None,
        timeslice: Optional[float] = None,
        settle_delay: Optional[float] = None,
        target_bitrate: Optional[int] = None,
    ):
        self.registry = registry
        self.timeslice = recording_config.TIMESLICE if timeslice is None else timeslice
        self.settle_delay = recording_config.SETTLE_DELAY if settle_delay is None else settle_delay
        self.bitrate = select_bitrate(
            recording_config.TARGET_BITRATE if target_bitrate is None else target_bitrate
        )
        self._capture_factory = capture_factory or WebmChunkCapture

        # identity -> RecordingSession
        self._sessions: Dict[str, RecordingSession] = {}
        # identity -> capture pipeline
        self._captures: Dict[str, Any] = {}

    def get(self, identity: str) -> Optional[RecordingSession]:
        return self._sessions.get(identity)

    def sessions(self) -> List[RecordingSession]:
        return list(self._sessions.values())

    def recording(self) -> List[str]:
        return [
            identity for identity, session in self._sessions.items()
            if session.state is RecordingState.RECORDING
        ]

    async def start(self, identity: str) -> RecordingSession:
        """참가자 스트림의 녹화를 시작합니다.

        이미 녹화 중이면 기존 세션을 그대로 반환합니다. stopped 세션은
        새 세션으로 교체됩니다.

        Raises:
            RecordingError: 엔트리가 없거나 스트림이 연결되지 않은 경우
        """
        existing = self._sessions.get(identity)
        if existing is not None and existing.state is RecordingState.RECORDING:
            return existing

        entry: Optional[ConnectionEntry] = self.registry.get(identity)
        if entry is None or entry.stream is None:
            raise RecordingError(f"{identity}: no attached stream")

        session = RecordingSession(
            identity=identity,
            registration_id=entry.registration_id,
            state=RecordingState.RECORDING,
        )
        track = self.registry.relay.subscribe(entry.stream)
        capture = self._capture_factory(track, self.bitrate, self.timeslice)

        async def on_ended(error: Optional[RecordingError]) -> None:
            await self._on_capture_ended(session, entry, error)

        self._sessions[identity] = session
        self._captures[identity] = capture
        capture.start(session.add_chunk, on_ended)
        logger.info(f"[Recording] {session.display_name} 녹화 시작 ({self.bitrate // 1000} kbps)")
        return session

    async def start_all(self) -> List[str]:
        """스트림이 연결된 모든 엔트리의 녹화를 독립적으로 시작합니다.

        Returns:
            List[str]: 녹화가 시작된(또는 이미 녹화 중인) identity 목록
        """
        started = []
        for entry in self.registry.streams():
            try:
                await self.start(entry.identity)
            except RecordingError as e:
                logger.warning(f"[Recording] {entry.identity} 녹화 시작 실패: {e}")
                continue
            started.append(entry.identity)
        logger.info(f"[Recording] 일괄 녹화 시작: {len(started)}개")
        return started

    async def _on_capture_ended(
        self,
        session: RecordingSession,
        entry: ConnectionEntry,
        error: Optional[RecordingError],
    ) -> None:
        if self._sessions.get(session.identity) is not session:
            return
        if session.state is not RecordingState.RECORDING:
            return
        self._captures.pop(session.identity, None)

        if error is None and entry.closed:
            session.finalize()
            logger.info(f"[Recording] {session.display_name} 연결 종료로 녹화 확정 ({session.size} bytes)")
            return

        session.error = error or RecordingError(f"{session.identity}: stream ended while recording")
        session.finalize()
        logger.error(f"[Recording] {session.display_name} 녹화 실패, 내보내기에서 제외: {session.error}")

    async def stop(self, identity: str) -> Optional[RecordingSession]:
        """녹화를 중지하고 파이프라인 flush 후 결과물을 확정합니다."""
        session = self._sessions.get(identity)
        if session is None or session.state is not RecordingState.RECORDING:
            return session

        capture = self._captures.pop(identity, None)
        # state를 먼저 바꿔 flush 중의 종료 콜백이 실패로 처리하지 않게 함
        session.state = RecordingState.STOPPED
        if capture is not None:
            await capture.stop()
        session.finalize()
        logger.info(
            f"[Recording] {session.display_name} 녹화 중지 "
            f"({len(session.chunks)} chunks, {session.size} bytes)"
        )
        return session

    async def stop_all(self) -> List[RecordingSession]:
        """진행 중인 모든 녹화를 동시에 중지하고 정착 지연만큼 기다립니다."""
        identities = self.recording()
        results = await asyncio.gather(
            *(self.stop(identity) for identity in identities),
            return_exceptions=True,
        )
        stopped = []
        for identity, result in zip(identities, results):
            if isinstance(result, Exception):
                logger.error(f"[Recording] {identity} 중지 실패: {result}", exc_info=result)
                session = self._sessions[identity]
                session.error = RecordingError(f"{identity}: stop failed: {result}")
                session.finalize()
                continue
            stopped.append(result)

        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        logger.info(f"[Recording] 일괄 녹화 중지: {len(stopped)}개")
        return stopped
