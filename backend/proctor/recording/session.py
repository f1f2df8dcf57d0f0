"""녹화 세션 데이터 모델."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..errors import RecordingError


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"


@dataclass(eq=False)
class RecordingSession:
    """참가자 한 명의 화면 녹화 상태.

    연결 엔트리가 종료되어도 세션은 남아 있으므로, 엔트리를 직접 참조하지
    않고 identity와 등록 번호만 복사해 둡니다.

    Attributes:
        identity (str): 참가자 identity
        registration_id (Optional[str]): 등록 번호 (내보내기 파일명)
        state (RecordingState): 캡처 상태
        chunks (List[bytes]): 수신 순서대로 쌓인 청크
        blob (Optional[bytes]): stop + flush 이후 확정된 결과물
        error (Optional[RecordingError]): 파이프라인 실패 시 원인 (내보내기에서 제외됨)
    """
    identity: str
    registration_id: Optional[str] = None
    state: RecordingState = RecordingState.IDLE
    chunks: List[bytes] = field(default_factory=list)
    blob: Optional[bytes] = None
    error: Optional[RecordingError] = None

    @property
    def display_name(self) -> str:
        return self.registration_id or self.identity

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    @property
    def exportable(self) -> bool:
        """stopped 상태이고, 실패하지 않았고, 데이터가 있는지 여부."""
        return (
            self.state is RecordingState.STOPPED
            and self.error is None
            and any(self.chunks)
        )

    def add_chunk(self, chunk: bytes) -> None:
        if chunk:
            self.chunks.append(chunk)

    def finalize(self) -> bytes:
        """청크를 하나의 blob으로 확정합니다."""
        self.state = RecordingState.STOPPED
        self.blob = b"".join(self.chunks)
        return self.blob

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "registration_id": self.registration_id,
            "state": self.state.value,
            "chunks": len(self.chunks),
            "bytes": self.size,
            "error": str(self.error) if self.error else None,
        }
