"""WebmChunkCapture 테스트 (실제 PyAV 인코더 사용)."""
import asyncio

import av
from aiortc import VideoStreamTrack
from aiortc.contrib.media import MediaRelay
from aiortc.mediastreams import MediaStreamError

from proctor.recording.capture import WebmChunkCapture

from conftest import wait_until

EBML_MAGIC = b"\x1a\x45\xdf\xa3"


class SyntheticScreen:
    """정해진 수의 빈 프레임을 낸 뒤 종료되는 비디오 트랙."""

    kind = "video"

    def __init__(self, frames: int, width: int = 64, height: int = 48, endless: bool = False):
        self.remaining = frames
        self.width = width
        self.height = height
        self.endless = endless
        self.stopped = False

    async def recv(self):
        await asyncio.sleep(0.001)
        if self.remaining <= 0:
            if self.endless:
                await asyncio.Event().wait()
            raise MediaStreamError
        self.remaining -= 1
        return av.VideoFrame(self.width, self.height, "yuv420p")

    def stop(self):
        self.stopped = True


async def test_track_end_flushes_webm_and_reports_clean_end():
    chunks = []
    ended = []

    async def on_ended(error):
        ended.append(error)

    capture = WebmChunkCapture(SyntheticScreen(frames=10), bitrate=150_000, timeslice=0.01)
    capture.start(chunks.append, on_ended)

    await wait_until(lambda: ended, timeout=5.0)

    assert ended == [None]
    assert chunks
    assert b"".join(chunks).startswith(EBML_MAGIC)
    assert capture.track.stopped


async def test_stop_emits_tail_without_end_callback():
    chunks = []
    ended = []

    async def on_ended(error):
        ended.append(error)

    # 홀수 해상도는 짝수로 잘림
    track = SyntheticScreen(frames=5, width=65, height=49, endless=True)
    capture = WebmChunkCapture(track, bitrate=150_000, timeslice=10.0)
    capture.start(chunks.append, on_ended)

    await wait_until(lambda: track.remaining == 0, timeout=5.0)
    await capture.stop()
    await capture.stop()

    assert ended == []
    assert len(chunks) == 1
    assert chunks[0].startswith(EBML_MAGIC)
    assert track.stopped


async def test_stop_before_any_frame_produces_nothing():
    chunks = []

    async def on_ended(error):
        pass

    capture = WebmChunkCapture(SyntheticScreen(frames=0, endless=True), bitrate=150_000, timeslice=0.01)
    capture.start(chunks.append, on_ended)
    await capture.stop()

    assert chunks == []


async def test_stop_releases_relay_subscription():
    source = VideoStreamTrack()
    relay = MediaRelay()
    proxy = relay.subscribe(source)
    chunks = []

    async def on_ended(error):
        pass

    capture = WebmChunkCapture(proxy, bitrate=150_000, timeslice=0.1)
    capture.start(chunks.append, on_ended)
    await asyncio.sleep(0.3)
    await capture.stop()

    assert proxy.readyState == "ended"
    queued = proxy._queue.qsize()
    await asyncio.sleep(0.3)
    # 구독 해제 후에는 relay가 더 이상 프레임을 쌓지 않음
    assert proxy._queue.qsize() == queued
    assert b"".join(chunks).startswith(EBML_MAGIC)
    source.stop()
