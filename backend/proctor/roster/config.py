"""명단/토큰 REST 협력자 설정."""

import os
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class RosterConfig:
    """참가자 명단 API 설정."""

    # 명단/토큰 API 기본 URL
    ROSTER_API_URL: str = os.getenv("ROSTER_API_URL", "http://localhost:3001")

    # 요청 타임아웃 (초)
    TIMEOUT: float = float(os.getenv("ROSTER_TIMEOUT", "10.0"))


roster_config = RosterConfig()
