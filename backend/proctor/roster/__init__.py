"""참가자 명단 REST 클라이언트 모듈."""

from .client import RosterClient
from .config import roster_config

__all__ = ["RosterClient", "roster_config"]
