"""화면 스트림 청크 캡처 파이프라인.

수신 비디오 트랙의 프레임을 PyAV로 VP8 인코딩하여 WebM 컨테이너에 쓰고,
일정 주기(timeslice)마다 누적된 바이트를 청크로 내보냅니다.

Pipeline:
    MediaStreamTrack.recv() → VideoFrame → libvpx 인코더 → WebM muxer
    → _ChunkSink (메모리 버퍼) → timeslice마다 on_chunk(bytes)

Note:
    - 컨테이너는 첫 프레임 도착 시 해상도를 보고 생성됨
    - 싱크는 seek를 지원하지 않으므로 muxer는 스트리밍 모드로 씀
    - 트랙이 끝나면 스스로 flush한 뒤 on_ended(None)을 호출
    - 인코딩 실패 시 flush 후 on_ended(RecordingError)를 호출
    - 종료 시 트랙을 stop()하여 MediaRelay 구독을 해제
"""
import asyncio
import logging
from fractions import Fraction
from typing import Awaitable, Callable, Optional

import av
from av.error import FFmpegError
from aiortc.mediastreams import MediaStreamError

from .config import recording_config
from ..errors import RecordingError

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], None]
EndedCallback = Callable[[Optional[RecordingError]], Awaitable[None]]


class _ChunkSink:
    """muxer 출력을 모아두는 쓰기 전용 버퍼."""

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data) -> int:
        self._buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        pass

    def take(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


class WebmChunkCapture:
    """비디오 트랙 하나를 WebM 청크로 캡처합니다.

    Attributes:
        track: 캡처할 비디오 트랙 (MediaRelay 구독 트랙)
        bitrate (int): 인코더 목표 비트레이트 (bps)
        timeslice (float): 청크 방출 주기 (초)
    """

    def __init__(
        self,
        track,
        bitrate: int,
        timeslice: float,
        frame_rate: int = recording_config.FRAME_RATE,
    ):
        self.track = track
        self.bitrate = bitrate
        self.timeslice = timeslice
        self.frame_rate = frame_rate

        self._sink = _ChunkSink()
        self._container = None
        self._stream = None
        self._frame_count = 0

        self._on_chunk: Optional[ChunkCallback] = None
        self._on_ended: Optional[EndedCallback] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._ticker_task: Optional[asyncio.Task] = None
        self._finished = False

    def start(self, on_chunk: ChunkCallback, on_ended: EndedCallback) -> None:
        self._on_chunk = on_chunk
        self._on_ended = on_ended
        self._reader_task = asyncio.create_task(self._run())
        self._ticker_task = asyncio.create_task(self._tick())

    async def stop(self) -> None:
        """캡처를 멈추고 인코더를 flush하여 마지막 청크를 내보냅니다."""
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._finish()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.timeslice)
            self._emit()

    def _emit(self) -> None:
        chunk = self._sink.take()
        if chunk and self._on_chunk:
            self._on_chunk(chunk)

    async def _run(self) -> None:
        error: Optional[RecordingError] = None
        try:
            while True:
                frame = await self.track.recv()
                self._encode(frame)
        except MediaStreamError:
            logger.info("[Recording] 트랙 종료 감지")
        except (FFmpegError, ValueError) as e:
            error = RecordingError(f"encoding failed: {e}")
            logger.error(f"[Recording] 인코딩 실패: {e}")

        error = self._finish() or error
        if self._on_ended:
            await self._on_ended(error)

    def _open(self, width: int, height: int) -> None:
        self._container = av.open(self._sink, mode="w", format=recording_config.CONTAINER_FORMAT)
        stream = self._container.add_stream(recording_config.VIDEO_CODEC, rate=self.frame_rate)
        # libvpx는 짝수 해상도만 허용
        stream.width = width - width % 2
        stream.height = height - height % 2
        stream.pix_fmt = "yuv420p"
        stream.bit_rate = self.bitrate
        stream.codec_context.time_base = Fraction(1, self.frame_rate)
        self._stream = stream
        logger.info(
            f"[Recording] 인코더 시작: {stream.width}x{stream.height}, "
            f"{self.bitrate // 1000} kbps"
        )

    def _encode(self, frame) -> None:
        if self._container is None:
            self._open(frame.width, frame.height)

        frame = frame.reformat(
            width=self._stream.width,
            height=self._stream.height,
            format="yuv420p",
        )
        frame.pts = self._frame_count
        frame.time_base = Fraction(1, self.frame_rate)
        self._frame_count += 1

        for packet in self._stream.encode(frame):
            self._container.mux(packet)

    def _finish(self) -> Optional[RecordingError]:
        """인코더를 flush하고 컨테이너를 닫은 뒤 남은 바이트를 청크로 내보냅니다."""
        if self._finished:
            return None
        self._finished = True

        if self._ticker_task is not None:
            self._ticker_task.cancel()
            self._ticker_task = None

        error = None
        if self._container is not None:
            try:
                for packet in self._stream.encode(None):
                    self._container.mux(packet)
                self._container.close()
            except (FFmpegError, ValueError) as e:
                error = RecordingError(f"flush failed: {e}")
                logger.error(f"[Recording] flush 실패: {e}")
            self._container = None

        self._emit()
        # relay 구독 해제
        self.track.stop()
        logger.info(f"[Recording] 캡처 종료 ({self._frame_count} frames)")
        return error
