"""참가자 명단 / 세션 토큰 REST 클라이언트.

외부 백엔드가 제공하는 두 엔드포인트를 호출합니다.

Endpoints:
    GET  {ROSTER_API_URL}/teachers/getStudentList/{coordinator_id}
         → {"studentList": ["UNI001", ...]}
    POST {ROSTER_API_URL}/createToken
         {"ID": coordinator_id, "studentList": [...]} → {"token": "..."}

Note:
    토큰 발급은 관리형 미디어 라우터(SFU) 배포 모드에서만 사용됩니다.
"""
import logging
from typing import List, Optional

import aiohttp

from .config import roster_config
from ..errors import RosterError

logger = logging.getLogger(__name__)


class RosterClient:
    """명단/토큰 API 클라이언트.

    Examples:
        >>> async with RosterClient() as client:
        ...     roster = await client.fetch_roster("teacher-01")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or roster_config.ROSTER_API_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or roster_config.TIMEOUT)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RosterClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, **kwargs) as response:
                if response.status >= 400:
                    raise RosterError(f"{method} {path} -> HTTP {response.status}")
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise RosterError(f"{method} {path} failed: {e}") from e

        if not isinstance(body, dict):
            raise RosterError(f"{method} {path}: unexpected response body")
        return body

    async def fetch_roster(self, coordinator_id: str) -> List[str]:
        """코디네이터의 참가자 명단(허용 identity 목록)을 조회합니다.

        Raises:
            RosterError: 요청 실패 또는 응답 형식 오류
        """
        body = await self._request("GET", f"/teachers/getStudentList/{coordinator_id}")
        roster = body.get("studentList")
        if not isinstance(roster, list):
            raise RosterError("roster response missing 'studentList'")
        roster = [str(identity) for identity in roster]
        logger.info(f"[Roster] {coordinator_id} 명단 조회: {len(roster)}명")
        return roster

    async def issue_token(self, coordinator_id: str, roster: List[str]) -> str:
        """관리형 라우팅 모드용 세션 토큰을 발급받습니다.

        Raises:
            RosterError: 요청 실패 또는 토큰 누락
        """
        body = await self._request(
            "POST",
            "/createToken",
            json={"ID": coordinator_id, "studentList": list(roster)},
        )
        token = body.get("token")
        if not token:
            raise RosterError("token response missing 'token'")
        logger.info(f"[Roster] {coordinator_id} 세션 토큰 발급 완료")
        return token
