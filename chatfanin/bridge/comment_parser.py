"""
브라우저 확장이 보내는 comment 페이로드 파싱
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from ..chat.base_client import ChatMessage, ChatPlatform

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = ChatPlatform.INSTAGRAM
ANONYMOUS_USER = "anonymous"

# 확장이 스크래핑하는 플랫폼
BRIDGE_PLATFORMS = frozenset({
    ChatPlatform.INSTAGRAM,
    ChatPlatform.TIKTOK,
    ChatPlatform.FACEBOOK,
    ChatPlatform.YOUTUBE,
})


def parse_timestamp(value: Any) -> datetime:
    """epoch ms(또는 초) 숫자를 datetime으로. 없거나 이상하면 현재 시각"""
    if value is None or isinstance(value, bool):
        return datetime.now()
    if isinstance(value, datetime):
        return value
    try:
        n = float(value)
        return datetime.fromtimestamp(n / 1000 if n > 1e12 else n)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now()


class CommentParser:
    """comment 페이로드(data)를 ChatMessage로 변환"""

    def __init__(self, default_platform: ChatPlatform = DEFAULT_PLATFORM):
        self.default_platform = default_platform

    def parse(self, data: Any, platform_hint: Optional[str] = None) -> Optional[ChatMessage]:
        """
        Args:
            data: {"id", "username", "text", "timestamp", "platform"} 딕셔너리
            platform_hint: 연결 URL 경로(ws://host:port/<hint>)의 플랫폼 힌트

        Returns:
            ChatMessage 또는 None (text가 비어 있으면 조용히 버림)
        """
        if not isinstance(data, dict):
            logger.debug("comment data가 객체가 아님: %r", data)
            return None

        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            return None

        username = data.get("username")
        if not isinstance(username, str) or not username.strip():
            username = ANONYMOUS_USER
        username = username.strip()

        raw_id = data.get("id")
        message_id = str(raw_id).strip() if raw_id is not None else ""
        if not message_id:
            message_id = uuid.uuid4().hex

        return ChatMessage(
            id=message_id,
            platform=self._resolve_platform(data.get("platform"), platform_hint, data),
            username=username.lower(),
            display_name=username,
            text=text,
            timestamp=parse_timestamp(data.get("timestamp")),
        )

    def _resolve_platform(self, value: Any, platform_hint: Optional[str], data: dict) -> ChatPlatform:
        if value is not None and str(value).strip():
            platform = ChatPlatform.parse(value)
            if platform not in BRIDGE_PLATFORMS:
                logger.warning("브리지 대상이 아닌 플랫폼 '%s', 기본값 %s 사용", value, self.default_platform.value)
                return self.default_platform
            return platform

        hinted = ChatPlatform.parse(platform_hint) if platform_hint else None
        if hinted in BRIDGE_PLATFORMS:
            logger.debug("payload에 platform 없음, 경로 힌트 사용: %s", hinted.value)
            return hinted

        logger.warning("platform 정보 없음! 기본값 %s 사용. data=%s", self.default_platform.value, data)
        return self.default_platform
