"""
브라우저 확장 브리지 인제스터

로컬 ExtensionBridgeServer를 띄우고, 확장이 보낸 댓글을 ChatIngestor 메시지로 내보낸다.
메시지의 platform은 페이로드(또는 경로 힌트)를 따르므로 instagram/tiktok/facebook/youtube가 섞여 나올 수 있다.
"""

import asyncio
import logging
from typing import Optional

from ..chat.base_client import ChatIngestor, ChatPlatform, FatalIngestorError
from .comment_parser import CommentParser
from .server import DEFAULT_HOST, DEFAULT_PING_INTERVAL, DEFAULT_PORT, ExtensionBridgeServer

logger = logging.getLogger(__name__)


class ExtensionBridgeIngestor(ChatIngestor):
    """확장 브리지 인제스터 (서버 역할)"""

    @property
    def platform(self) -> ChatPlatform:
        return ChatPlatform.INSTAGRAM

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = DEFAULT_HOST,
        ping_interval: Optional[float] = DEFAULT_PING_INTERVAL,
        parser: Optional[CommentParser] = None,
        **kwargs,
    ):
        """
        Args:
            port: 확장이 접속할 로컬 포트 (확장 기본값 9876)
            host: 리슨 주소
            ping_interval: 서버 → 확장 ping 주기 (초)
            parser: comment 파서
            **kwargs: ChatIngestor 공통 인자
        """
        super().__init__("extension-bridge", **kwargs)
        self.host = host
        self.port = port
        self.ping_interval = ping_interval
        self.parser = parser

        self.server: Optional[ExtensionBridgeServer] = None
        self._extension_connected = asyncio.Event()

    @property
    def is_extension_connected(self) -> bool:
        return self.server is not None and self.server.client_count > 0

    async def connect(self):
        server = ExtensionBridgeServer(
            port=self.port,
            host=self.host,
            on_message=self._publish,
            on_client_connected=self._on_client_connected,
            on_client_disconnected=self._on_client_disconnected,
            ping_interval=self.ping_interval,
            parser=self.parser,
        )
        try:
            await server.start()
        except OSError as e:
            raise FatalIngestorError(f"브리지 포트 {self.port} 바인딩 실패: {e}") from e
        self.server = server
        # 포트 0으로 시작했으면 실제 포트를 기억해서 재연결 시 같은 포트 사용
        self.port = server.port
        logger.info(f"[{self.platform_name}] 확장 연결 대기 중: ws://{self.host}:{self.port}")

    async def disconnect(self):
        server, self.server = self.server, None
        self._extension_connected.clear()
        if server is not None:
            await server.stop()

    async def listen(self):
        """서버가 멈출 때까지 대기. 댓글은 서버 콜백으로 들어옴"""
        if self.server is None:
            raise ConnectionError("브리지 서버가 실행 중이 아닙니다")
        await self.server.wait_closed()

    def _on_client_connected(self, client_id: str):
        logger.info(f"[{self.platform_name}] 확장 연결됨: {client_id}")
        self._extension_connected.set()

    def _on_client_disconnected(self, client_id: str):
        logger.info(f"[{self.platform_name}] 확장 연결 해제: {client_id}")
        if not self.is_extension_connected:
            self._extension_connected.clear()

    async def wait_for_extension(self, timeout: Optional[float] = None) -> bool:
        """
        확장이 하나 이상 연결될 때까지 대기

        Returns:
            연결되면 True, 시간 초과면 False
        """
        if self.is_extension_connected:
            return True
        try:
            await asyncio.wait_for(self._extension_connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True
