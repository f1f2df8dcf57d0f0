"""녹화 모듈.

Classes:
    RecordingManager: 참가자별 녹화 시작/중지
    RecordingSession: 참가자 한 명의 녹화 상태
    WebmChunkCapture: PyAV 기반 WebM 청크 캡처 파이프라인
    ArchiveExporter: 녹화 결과 ZIP 내보내기

Config:
    recording_config: 청크 주기, 정착 지연, 목표 비트레이트
    storage_config: 아카이브 저장 경로
"""

from .session import RecordingSession, RecordingState
from .manager import RecordingManager, select_bitrate
from .capture import WebmChunkCapture
from .archive import ArchiveExporter, RecordingArchive
from .config import QUALITY_TIERS, recording_config, storage_config

__all__ = [
    "RecordingManager",
    "RecordingSession",
    "RecordingState",
    "WebmChunkCapture",
    "ArchiveExporter",
    "RecordingArchive",
    "select_bitrate",
    "QUALITY_TIERS",
    "recording_config",
    "storage_config",
]
