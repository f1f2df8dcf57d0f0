"""녹화 모듈 설정.

청크 주기, 정착(settle) 지연, 품질 티어, 저장 경로 설정.
"""

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# 이름 있는 품질 티어 (bps). 적응형 비트레이트는 사용하지 않음
QUALITY_TIERS: Dict[str, int] = {
    "low": 150_000,
    "medium": 500_000,
    "standard": 1_000_000,
    "high": 2_500_000,
    "ultra": 5_000_000,
}


def _optional_int(value: Optional[str]) -> Optional[int]:
    """빈 문자열/None이면 None, 아니면 int로 변환."""
    if not value:
        return None
    return int(value)


# ============================================================
# 녹화 설정
# ============================================================

@dataclass(frozen=True)
class RecordingConfig:
    """녹화 파이프라인 설정."""

    # 청크 캡처 주기 (초)
    TIMESLICE: float = float(os.getenv("RECORDING_TIMESLICE", "1.0"))

    # stop_all() 이후 모든 청크가 전달될 때까지 기다리는 시간 (초)
    SETTLE_DELAY: float = float(os.getenv("RECORDING_SETTLE_DELAY", "1.0"))

    # 목표 비트레이트 (bps). None이면 standard 티어
    TARGET_BITRATE: Optional[int] = _optional_int(os.getenv("RECORDING_TARGET_BITRATE"))

    # 컨테이너 / 코덱
    CONTAINER_FORMAT: str = "webm"
    VIDEO_CODEC: str = "libvpx"
    FRAME_RATE: int = 15


# ============================================================
# 데이터 저장 경로
# ============================================================

@dataclass(frozen=True)
class StorageConfig:
    """녹화 아카이브 저장 경로 설정."""

    # 기본 데이터 디렉토리
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data"))

    # 아카이브 저장 경로
    RECORDINGS_DIR: Path = Path(os.getenv("RECORDINGS_DIR", str(DATA_DIR / "recordings")))

    def ensure_dirs(self) -> None:
        """필요한 디렉토리 생성."""
        self.RECORDINGS_DIR.mkdir(parents=True, exist_ok=True)


recording_config = RecordingConfig()
storage_config = StorageConfig()
