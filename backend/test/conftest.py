"""테스트 공용 픽스처.

aiortc RTCPeerConnection, 미디어 트랙, 캡처 파이프라인, 시그널링 채널을
메모리 안의 대체 구현으로 바꿉니다.
"""
import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from proctor.signaling.messages import SignalingMessage
from proctor.webrtc.peer_manager import ConnectionRegistry
from proctor.webrtc.state import NegotiationRole


def make_candidate(port: int, sdp_mid: str = "0", index: int = 0) -> dict:
    """브라우저가 보내는 형태의 host candidate."""
    return {
        "candidate": f"candidate:1 1 udp 2130706431 192.168.0.10 {port} typ host",
        "sdpMid": sdp_mid,
        "sdpMLineIndex": index,
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class _Emitter:
    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event: str):
        def decorator(handler):
            self._handlers.setdefault(event, []).append(handler)
            return handler
        return decorator

    async def emit(self, event: str, *args) -> None:
        for handler in self._handlers.get(event, []):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result


class FakeDescription:
    def __init__(self, sdp: str, type: str):
        self.sdp = sdp
        self.type = type


class FakePeerConnection(_Emitter):
    """RTCPeerConnection 대체 구현.

    gate_remote / gate_local 이벤트를 설정하면 해당 단계에서 멈춥니다.
    sdp가 "bad"로 시작하면 ValueError를 던집니다.
    """

    instances: List["FakePeerConnection"] = []

    def __init__(self):
        super().__init__()
        self.remoteDescription = None
        self.localDescription = None
        self.connectionState = "new"
        self.applied_candidates: List[int] = []
        self.tracks = []
        self.close_count = 0
        self.gate_remote: Optional[asyncio.Event] = None
        self.gate_local: Optional[asyncio.Event] = None
        FakePeerConnection.instances.append(self)

    async def setRemoteDescription(self, description):
        if description.sdp.startswith("bad"):
            raise ValueError("invalid sdp")
        if self.gate_remote is not None:
            await self.gate_remote.wait()
        await asyncio.sleep(0)
        self.remoteDescription = description

    async def createAnswer(self):
        await asyncio.sleep(0)
        return FakeDescription(f"answer-to:{self.remoteDescription.sdp}", "answer")

    async def createOffer(self):
        await asyncio.sleep(0)
        return FakeDescription(f"offer-{id(self)}", "offer")

    async def setLocalDescription(self, description):
        if self.gate_local is not None:
            await self.gate_local.wait()
        await asyncio.sleep(0)
        self.localDescription = description

    async def addIceCandidate(self, candidate):
        await asyncio.sleep(0)
        self.applied_candidates.append(candidate.port)

    def addTrack(self, track):
        self.tracks.append(track)

    async def close(self):
        self.close_count += 1
        self.connectionState = "closed"

    async def set_state(self, state: str) -> None:
        self.connectionState = state
        await self.emit("connectionstatechange")


class FakeTrack(_Emitter):
    def __init__(self, kind: str = "video"):
        super().__init__()
        self.kind = kind


class FakeRelay:
    def subscribe(self, track, buffered: bool = True):
        return track


class FakeCapture:
    """WebmChunkCapture 대체 구현. 테스트가 청크와 종료를 직접 발생시킵니다."""

    def __init__(self, track, bitrate: int, timeslice: float):
        self.track = track
        self.bitrate = bitrate
        self.timeslice = timeslice
        self.on_chunk = None
        self.on_ended = None
        self.stopped = False
        self.tail = b"tail"

    def start(self, on_chunk, on_ended):
        self.on_chunk = on_chunk
        self.on_ended = on_ended

    def emit(self, data: bytes) -> None:
        self.on_chunk(data)

    async def end(self, error=None) -> None:
        await self.on_ended(error)

    async def stop(self) -> None:
        self.stopped = True
        if self.tail:
            self.on_chunk(self.tail)


class Outbox:
    """ConnectionRegistry.send 대체. 보낸 메시지를 모읍니다."""

    def __init__(self):
        self.messages: List[SignalingMessage] = []

    async def __call__(self, message: SignalingMessage) -> None:
        self.messages.append(message)

    def of_type(self, cls) -> list:
        return [m for m in self.messages if isinstance(m, cls)]


class FakeChannel:
    """SignalingChannel 대체."""

    def __init__(self, identity: str):
        self.identity = identity
        self.sent: List[SignalingMessage] = []
        self.message_handlers = []
        self.reconnect_handlers = []
        self.connected = False

    def on_message(self, handler):
        self.message_handlers.append(handler)
        return handler

    def on_reconnect(self, handler):
        self.reconnect_handlers.append(handler)
        return handler

    async def connect(self, endpoint=None):
        self.connected = True
        return self

    async def send(self, message: SignalingMessage) -> None:
        self.sent.append(message)

    async def disconnect(self) -> None:
        self.connected = False

    async def deliver(self, message: SignalingMessage) -> None:
        for handler in self.message_handlers:
            await handler(message)

    async def reconnect(self) -> None:
        for handler in self.reconnect_handlers:
            await handler()

    def of_type(self, cls) -> list:
        return [m for m in self.sent if isinstance(m, cls)]


@pytest.fixture(autouse=True)
def reset_fake_instances():
    FakePeerConnection.instances.clear()
    yield
    FakePeerConnection.instances.clear()


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def registry(outbox) -> ConnectionRegistry:
    """감독관(answerer) 레지스트리."""
    return ConnectionRegistry(
        "teacher-01",
        send=outbox,
        role=NegotiationRole.ANSWERER,
        peer_factory=FakePeerConnection,
        relay=FakeRelay(),
    )


@pytest.fixture
def offerer(outbox) -> ConnectionRegistry:
    """수험생(offerer) 레지스트리."""
    return ConnectionRegistry(
        "UNI001",
        send=outbox,
        role=NegotiationRole.OFFERER,
        peer_factory=FakePeerConnection,
        relay=FakeRelay(),
        registration_id="20231234",
    )
