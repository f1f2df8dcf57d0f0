"""WebRTC ICE 서버 설정.

감독관과 수험생의 RTCPeerConnection이 사용할 STUN/TURN 서버를 환경변수에서
읽어 aiortc RTCConfiguration으로 만듭니다.

Environment Variables:
    STUN_SERVER_URL: STUN URL (쉼표로 여러 개 지정 가능)
    TURN_SERVER_URL: TURN URL (쉼표로 여러 개 지정 가능)
    TURN_USERNAME / TURN_CREDENTIAL: TURN 인증 정보
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional, Tuple

from dotenv import load_dotenv
from aiortc import RTCConfiguration, RTCIceServer

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _split_urls(value: Optional[str]) -> Tuple[str, ...]:
    return tuple(url.strip() for url in (value or "").split(",") if url.strip())


@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정.

    STUN_SERVER_URL이 비어 있으면 공개 STUN 서버를 사용합니다. 학교망처럼
    UDP가 막힌 환경에서는 TURN 설정이 있어야 화면이 전달됩니다.
    """

    STUN_URLS: Tuple[str, ...] = _split_urls(os.getenv("STUN_SERVER_URL"))

    TURN_URLS: Tuple[str, ...] = _split_urls(os.getenv("TURN_SERVER_URL"))
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 미설정 시 사용
    FALLBACK_STUN_URLS: Tuple[str, ...] = ("stun:stun.l.google.com:19302",)

    @property
    def has_turn_server(self) -> bool:
        return bool(self.TURN_URLS) and bool(self.TURN_USERNAME) and bool(self.TURN_CREDENTIAL)

    def ice_servers(self) -> List[RTCIceServer]:
        """설정된 STUN/TURN 서버 목록을 aiortc 형식으로 반환합니다."""
        servers = [RTCIceServer(urls=list(self.STUN_URLS or self.FALLBACK_STUN_URLS))]
        if self.has_turn_server:
            servers.append(RTCIceServer(
                urls=list(self.TURN_URLS),
                username=self.TURN_USERNAME,
                credential=self.TURN_CREDENTIAL,
            ))
        elif self.TURN_URLS:
            logger.warning("[WebRTC Config] TURN 인증 정보가 없어 TURN 서버를 사용하지 않음")
        return servers

    def rtc_configuration(self) -> RTCConfiguration:
        """RTCPeerConnection 생성에 사용할 설정 객체."""
        return RTCConfiguration(iceServers=self.ice_servers())


ice_config = ICEServerConfig()

logger.debug(
    f"[WebRTC Config] STUN={list(ice_config.STUN_URLS or ice_config.FALLBACK_STUN_URLS)}, "
    f"TURN 사용={ice_config.has_turn_server}"
)
