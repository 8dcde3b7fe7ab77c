"""
인제스터 팩토리
플랫폼 이름으로 인제스터를 생성하는 팩토리 패턴
"""

from typing import Dict, Optional

from ..bridge.ingestor import ExtensionBridgeIngestor
from .base_client import ChatIngestor
from .chzzk_client import ChzzkIngestor
from .twitch_client import TwitchIrcIngestor


class IngestorFactory:
    """인제스터 팩토리 클래스"""

    _platforms: Dict[str, type[ChatIngestor]] = {
        "twitch": TwitchIrcIngestor,
        "chzzk": ChzzkIngestor,
        "extension": ExtensionBridgeIngestor,
    }

    @classmethod
    def create(
        cls,
        platform: str,
        channel_id: Optional[str] = None,
        **kwargs
    ) -> ChatIngestor:
        """
        플랫폼별 인제스터 생성

        Args:
            platform: 플랫폼 이름 ("twitch", "chzzk", "extension")
            channel_id: 채널 ID (extension은 필요 없음)
            **kwargs: 플랫폼별 추가 설정 (oauth_token, access_token, port 등)

        Returns:
            ChatIngestor 인스턴스

        Raises:
            ValueError: 지원하지 않는 플랫폼인 경우
        """
        key = (platform or "").strip().lower()
        if key not in cls._platforms:
            supported = ", ".join(cls._platforms.keys())
            raise ValueError(
                f"지원하지 않는 플랫폼: {platform}. "
                f"지원 플랫폼: {supported}"
            )

        ingestor_class = cls._platforms[key]
        if channel_id is not None:
            kwargs["channel_id"] = channel_id
        return ingestor_class(**kwargs)

    @classmethod
    def register_platform(cls, platform: str, ingestor_class: type[ChatIngestor]):
        """
        새로운 플랫폼 등록 (런타임에 플랫폼 추가 가능)

        Args:
            platform: 플랫폼 이름
            ingestor_class: ChatIngestor를 상속한 클래스
        """
        if not isinstance(ingestor_class, type) or not issubclass(ingestor_class, ChatIngestor):
            raise TypeError(
                f"ingestor_class는 ChatIngestor를 상속해야 합니다. "
                f"현재: {ingestor_class!r}"
            )
        cls._platforms[platform.strip().lower()] = ingestor_class

    @classmethod
    def get_supported_platforms(cls) -> list[str]:
        """지원하는 플랫폼 목록 반환"""
        return list(cls._platforms.keys())
