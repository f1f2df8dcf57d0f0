"""시그널링 릴레이 WebSocket 채널.

릴레이 서버와의 양방향 메시지 채널을 제공합니다. 미디어는 다루지 않고
세션 설정 메시지만 주고받습니다.

주요 기능:
    - 릴레이 연결 (identity 쿼리 파라미터 포함)
    - 메시지 송신 / 수신 핸들러 등록
    - 연결이 끊기면 지수 백오프로 자동 재연결
    - 재연결 후 상위 계층에 알림 (아직 필요한 세션 재시그널링용)

Note:
    - 수신 메시지는 하나의 reader 태스크가 수신 순서대로 핸들러에 전달함
    - 연결 끊김은 ConnectionRegistry 상태를 건드리지 않음
    - 잘못된 형식의 메시지는 경고 로그 후 건너뜀

Examples:
    >>> channel = SignalingChannel("teacher-01")
    >>> channel.on_message(handle)
    >>> await channel.connect("ws://localhost:8000/ws")
    >>> await channel.send(JoinRoom(room_name="exam-1", identity="UNI001"))
    >>> await channel.disconnect()
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import signaling_config
from .messages import SignalingMessage, encode_message, parse_message
from ..errors import MessageFormatError, TransportError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[SignalingMessage], Awaitable[None]]
ReconnectHandler = Callable[[], Awaitable[None]]


def _with_identity(endpoint: str, identity: str) -> str:
    """엔드포인트 URL에 identity 쿼리 파라미터를 추가합니다."""
    parts = urlsplit(endpoint)
    query = dict(parse_qsl(parts.query))
    query["identity"] = identity
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class SignalingChannel:
    """릴레이 서버와 연결된 시그널링 채널.

    Attributes:
        identity (str): 이 채널의 소유자 identity (릴레이 라우팅 키)
        endpoint (Optional[str]): 마지막으로 연결한 릴레이 엔드포인트
        reconnect_delay (float): 첫 재연결 대기 시간 (초)
        max_reconnect_delay (float): 재연결 대기 시간 상한 (초)
    """

    def __init__(
        self,
        identity: str,
        reconnect_delay: Optional[float] = None,
        max_reconnect_delay: Optional[float] = None,
        connector: Optional[Callable[[str], Awaitable[Any]]] = None,
    ):
        self.identity = identity
        self.endpoint: Optional[str] = None
        self.reconnect_delay = (
            signaling_config.RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        )
        self.max_reconnect_delay = (
            signaling_config.MAX_RECONNECT_DELAY if max_reconnect_delay is None else max_reconnect_delay
        )
        self._connector = connector or self._default_connector
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._closing = False
        self._message_handlers: List[MessageHandler] = []
        self._reconnect_handlers: List[ReconnectHandler] = []

    @staticmethod
    async def _default_connector(url: str):
        return await websockets.connect(
            url,
            ping_interval=signaling_config.PING_INTERVAL,
            ping_timeout=signaling_config.PING_TIMEOUT,
        )

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def on_message(self, handler: MessageHandler) -> MessageHandler:
        """수신 메시지 핸들러를 등록합니다. 데코레이터로도 사용할 수 있습니다."""
        self._message_handlers.append(handler)
        return handler

    def on_reconnect(self, handler: ReconnectHandler) -> ReconnectHandler:
        """자동 재연결 성공 시 호출될 핸들러를 등록합니다."""
        self._reconnect_handlers.append(handler)
        return handler

    async def connect(self, endpoint: Optional[str] = None) -> "SignalingChannel":
        """릴레이에 연결하고 수신 루프를 시작합니다.

        Args:
            endpoint: 릴레이 WebSocket URL. None이면 설정값(SIGNALING_URL) 사용

        Returns:
            SignalingChannel: 자기 자신 (체이닝용)

        Raises:
            TransportError: 릴레이에 연결할 수 없을 때
        """
        self.endpoint = endpoint or self.endpoint or signaling_config.SIGNALING_URL
        self._closing = False
        await self._open()
        self._reader_task = asyncio.create_task(self._read_loop())
        return self

    async def _open(self) -> None:
        url = _with_identity(self.endpoint, self.identity)
        try:
            self._ws = await self._connector(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportError(f"relay unreachable: {self.endpoint} ({e})") from e
        logger.info(f"[Signaling] 릴레이 연결됨: {self.endpoint} (identity={self.identity})")

    async def send(self, message: SignalingMessage) -> None:
        """메시지를 릴레이로 전송합니다.

        Raises:
            TransportError: 연결되어 있지 않거나 전송 중 연결이 끊긴 경우
        """
        if self._ws is None:
            raise TransportError(f"not connected (dropping {message.TYPE})")
        try:
            await self._ws.send(encode_message(message))
        except ConnectionClosed as e:
            raise TransportError(f"connection closed while sending {message.TYPE}") from e
        logger.debug(f"[Signaling] 전송: {message.TYPE}")

    async def disconnect(self) -> None:
        """연결을 종료하고 재연결을 중단합니다. 여러 번 호출해도 안전합니다."""
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"[Signaling] 릴레이 연결 종료 (identity={self.identity})")

    async def _read_loop(self) -> None:
        """수신 루프. 연결이 끊기면 재연결을 시도합니다."""
        while not self._closing:
            ws = self._ws
            try:
                async for raw in ws:
                    await self._dispatch(raw)
            except ConnectionClosed as e:
                logger.warning(f"[Signaling] 릴레이 연결 끊김: {e}")
            if self._closing:
                break
            self._ws = None
            await self._reconnect()

    async def _dispatch(self, raw) -> None:
        try:
            message = parse_message(raw)
        except MessageFormatError as e:
            logger.warning(f"[Signaling] 잘못된 메시지 무시: {e}")
            return

        for handler in self._message_handlers:
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"[Signaling] {message.TYPE} 핸들러 오류: {e}", exc_info=True)

    async def _reconnect(self) -> None:
        delay = self.reconnect_delay
        attempt = 0
        while not self._closing:
            attempt += 1
            await asyncio.sleep(delay)
            try:
                await self._open()
            except TransportError as e:
                logger.warning(f"[Signaling] 재연결 실패 (시도 {attempt}): {e}")
                delay = min(max(delay, 0.1) * 2, self.max_reconnect_delay)
                continue

            logger.info(f"[Signaling] 재연결 성공 (시도 {attempt})")
            for handler in self._reconnect_handlers:
                try:
                    await handler()
                except Exception as e:
                    logger.error(f"[Signaling] 재연결 핸들러 오류: {e}", exc_info=True)
            return
