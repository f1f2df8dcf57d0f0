"""공유 의존성 모듈.

릴레이 접근 토큰 검증. RELAY_ACCESS_TOKEN이 비어 있으면 검증하지 않습니다.
"""

import os
from typing import Optional

from fastapi import Header, HTTPException

RELAY_ACCESS_TOKEN = os.getenv("RELAY_ACCESS_TOKEN", "")


def _token_matches(token: Optional[str]) -> bool:
    return not RELAY_ACCESS_TOKEN or token == RELAY_ACCESS_TOKEN


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """REST 요청의 Bearer 토큰을 검증합니다.

    Raises:
        HTTPException: 토큰이 없거나 일치하지 않는 경우 (401)
    """
    if not RELAY_ACCESS_TOKEN:
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not _token_matches(token):
        raise HTTPException(status_code=401, detail="Invalid access token")
    return True


def verify_ws_token(token: Optional[str]) -> bool:
    """WebSocket 쿼리 파라미터 토큰을 검증합니다."""
    return _token_matches(token)
