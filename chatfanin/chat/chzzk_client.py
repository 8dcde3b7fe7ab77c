"""
치지직 Socket.IO 클라이언트
실시간 채팅/후원 메시지를 수신합니다.

참고: https://chzzk.gitbook.io/chzzk/chzzk-api/session
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

import httpx
import socketio

from .base_client import (
    ChatIngestor,
    ChatMessage,
    ChatMessageType,
    ChatPlatform,
    FatalIngestorError,
)

logger = logging.getLogger(__name__)

CHZZK_API_BASE_URL = "https://openapi.chzzk.naver.com"


def _as_dict(data: Any) -> Optional[dict]:
    """Socket.IO 페이로드는 JSON 문자열 또는 dict로 옴"""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


class ChzzkIngestor(ChatIngestor):
    """치지직 Socket.IO 인제스터

    치지직은 WebSocket이 아닌 Socket.IO를 사용합니다.
    먼저 세션 생성 API를 호출하여 연결 URL을 받아야 합니다.
    """

    @property
    def platform(self) -> ChatPlatform:
        return ChatPlatform.CHZZK

    def __init__(
        self,
        channel_id: str,
        access_token: Optional[str] = None,
        api_base_url: str = CHZZK_API_BASE_URL,
        **kwargs,
    ):
        """
        Args:
            channel_id: 치지직 채널 ID
            access_token: Access Token (유저 인증)
            api_base_url: Open API 도메인 (openapi.chzzk.naver.com, 하이픈 없음)
            **kwargs: ChatIngestor 공통 인자 (on_message, reconnect_delay 등)
        """
        super().__init__(channel_id, **kwargs)
        self.access_token = access_token
        self.api_base_url = api_base_url

        self.sio: Optional[socketio.AsyncClient] = None
        self.session_url: Optional[str] = None
        self.session_key: Optional[str] = None

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    async def _get_session_url(self) -> str:
        """
        세션 생성 API(GET /open/v1/sessions/auth)로 Socket.IO 연결 URL 획득
        """
        if not self.access_token:
            raise FatalIngestorError("치지직 연결에는 access_token이 필요합니다")

        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(
                f"{self.api_base_url}/open/v1/sessions/auth",
                headers=self._auth_headers(),
            )
        if response.status_code in (401, 403):
            raise FatalIngestorError(f"치지직 인증 실패 (HTTP {response.status_code})")
        response.raise_for_status()
        data = response.json()
        # 공통 응답: {"code": 200, "content": { "url": "..." }}
        body = data.get("content") if data.get("content") is not None else data
        return body["url"]

    async def connect(self):
        """세션 URL 획득 후 Socket.IO 연결"""
        self.session_url = await self._get_session_url()
        logger.info(f"[{self.platform_name}] 세션 URL 획득 성공")

        self.sio = socketio.AsyncClient(
            reconnection=False,  # 재연결은 ChatIngestor가 관리
            logger=False,
            engineio_logger=False,
        )
        self.sio.on("SYSTEM", self._on_system_message)
        self.sio.on("CHAT", self._on_chat_message)
        self.sio.on("DONATION", self._on_donation_message)
        self.sio.on("disconnect", self._on_disconnect)

        logger.info(f"[{self.platform_name}] Socket.IO 연결 시도")
        await self.sio.connect(self.session_url, transports=["websocket"])

    def _on_disconnect(self, *args):
        logger.warning(f"[{self.platform_name}] Socket.IO 연결 종료")

    async def disconnect(self):
        sio, self.sio = self.sio, None
        self.session_key = None
        if sio is not None and sio.connected:
            await sio.disconnect()
            logger.info(f"[{self.platform_name}] Socket.IO 연결 종료")

    async def listen(self):
        """Socket.IO는 이벤트 기반이므로 연결이 끊길 때까지 대기만 함"""
        if self.sio is None:
            raise ConnectionError("Socket.IO 연결이 없습니다")
        await self.sio.wait()

    async def _on_system_message(self, data):
        """
        SYSTEM 이벤트: connected 메시지에서 sessionKey를 받아 채팅·후원 구독
        """
        payload = _as_dict(data)
        if payload is None:
            logger.debug(f"[{self.platform_name}] SYSTEM payload (non-JSON): {str(data)[:100]}")
            return
        msg_type = payload.get("type")
        body = payload.get("data") or {}

        if msg_type == "connected":
            self.session_key = body.get("sessionKey")
            logger.info(f"[{self.platform_name}] 세션 키 획득")
            try:
                await self._subscribe("chat")
            except httpx.HTTPError as e:
                logger.error(f"[{self.platform_name}] 채팅 구독 실패: {e}")
                if self.sio is not None:
                    await self.sio.disconnect()
                return
            try:
                await self._subscribe("donation")
            except httpx.HTTPError as e:
                logger.warning(f"[{self.platform_name}] 후원 구독 실패 (채팅만 사용): {e}")
        elif msg_type == "subscribed":
            logger.info(f"[{self.platform_name}] 구독 완료: {body.get('eventType')} - {body.get('channelId')}")
        elif msg_type == "unsubscribed":
            logger.warning(f"[{self.platform_name}] 구독 취소됨")
        elif msg_type == "revoked":
            logger.error(f"[{self.platform_name}] 이벤트 권한 취소됨")

    async def _subscribe(self, event: str):
        """이벤트 구독 요청 (POST /open/v1/sessions/events/subscribe/{event})"""
        if not self.session_key:
            logger.error(f"[{self.platform_name}] 세션 키가 없어 구독할 수 없습니다")
            return
        url = f"{self.api_base_url}/open/v1/sessions/events/subscribe/{event}"
        params = {"sessionKey": self.session_key, "channelId": self.identifier}
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(url, params=params, headers=self._auth_headers())
            response.raise_for_status()
        logger.info(f"[{self.platform_name}] {event} 구독 요청 완료: {self.identifier}")

    def parse_chat(self, data: Any) -> Optional[ChatMessage]:
        """CHAT 페이로드(channelId, profile, content, messageTime 등)를 ChatMessage로"""
        payload = _as_dict(data)
        if payload is None:
            return None
        content = (payload.get("content") or "").strip()
        if not content:
            return None
        profile = payload.get("profile") or {}
        nickname = profile.get("nickname") or "시청자"
        sender = payload.get("senderChannelId") or nickname
        message_time = payload.get("messageTime") or 0  # Int64 (ms)
        timestamp = datetime.fromtimestamp(message_time / 1000) if message_time else None

        # API에 messageId가 없어서 발신자+시각으로 식별
        message_id = f"{sender}:{message_time}" if message_time else f"{sender}:{datetime.now().timestamp()}"
        role = str(payload.get("userRoleCode") or "")
        return self._create_message(
            message_id=message_id,
            user=str(sender),
            display_name=nickname,
            text=content,
            timestamp=timestamp,
            is_owner=role == "streamer",
            is_moderator=role in ("streamer", "streaming_channel_manager", "streaming_chat_manager"),
            is_verified=bool(profile.get("verifiedMark")),
        )

    def parse_donation(self, data: Any) -> Optional[ChatMessage]:
        """DONATION 페이로드(donatorNickname, payAmount, donationText)를 ChatMessage로"""
        payload = _as_dict(data)
        if payload is None:
            return None
        nickname = (payload.get("donatorNickname") or "").strip() or "시청자"
        pay_amount = str(payload.get("payAmount") or "0").strip()
        donation_text = (payload.get("donationText") or "").strip()
        text = f"{pay_amount}원 후원: {donation_text}" if donation_text else f"{pay_amount}원 후원했습니다"
        sender = payload.get("donatorChannelId") or nickname
        now = datetime.now()
        return self._create_message(
            message_id=f"donation:{sender}:{now.timestamp()}",
            user=str(sender),
            display_name=nickname,
            text=text,
            timestamp=now,
            message_type=ChatMessageType.SUPERCHAT,
        )

    async def _on_chat_message(self, data):
        message = self.parse_chat(data)
        if message is not None:
            await self._publish(message)

    async def _on_donation_message(self, data):
        message = self.parse_donation(data)
        if message is not None:
            logger.info(f"[{self.platform_name}] 후원 수신: {message.display_name}")
            await self._publish(message)
