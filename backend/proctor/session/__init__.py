"""감독관 / 수험생 세션 모듈."""

from .coordinator import CoordinatorSession
from .participant import ParticipantSession, media_player_source

__all__ = ["CoordinatorSession", "ParticipantSession", "media_player_source"]
