"""
환경 변수(.env) 기반 설정

.env 예시:
    BRIDGE_ENABLED=true
    BRIDGE_PORT=9876
    TWITCH_CHANNEL=somechannel
    CHZZK_CHANNEL_ID=...
    CHZZK_ACCESS_TOKEN=...
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from dotenv import load_dotenv

T = TypeVar("T")

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass
class Settings:
    """실행 설정"""
    # 확장 브리지
    bridge_enabled: bool = True
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 9876
    bridge_ping_interval: float = 30.0

    # 버스
    dedup_capacity: int = 10_000
    max_messages_per_second: int = 20
    stats_interval: float = 60.0

    # 재연결
    reconnect_delay: float = 1.0
    max_reconnect_attempts: int = 5

    # 트위치 (채널이 없으면 사용 안 함)
    twitch_channel: Optional[str] = None
    twitch_oauth_token: Optional[str] = None
    twitch_username: Optional[str] = None
    twitch_use_ssl: bool = False

    # 치지직 (채널 ID + 토큰이 모두 있어야 사용)
    chzzk_channel_id: Optional[str] = None
    chzzk_access_token: Optional[str] = None


def _get_str(key: str) -> Optional[str]:
    value = os.environ.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _get_bool(key: str, default: bool) -> bool:
    value = _get_str(key)
    if value is None:
        return default
    return value.lower() in TRUE_VALUES


def _get_number(key: str, default: T, cast: Callable[[str], T]) -> T:
    value = _get_str(key)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"환경 변수 {key} 값이 올바르지 않습니다: {value!r}") from None


def load_settings(env_file: Optional[Union[str, Path]] = None) -> Settings:
    """
    .env를 읽어 Settings 생성 (이미 설정된 환경 변수가 우선)

    Args:
        env_file: .env 경로 (없으면 현재 디렉터리부터 탐색)

    Raises:
        ValueError: 숫자 항목을 해석할 수 없을 때 (키 이름 포함)
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    defaults = Settings()
    return Settings(
        bridge_enabled=_get_bool("BRIDGE_ENABLED", defaults.bridge_enabled),
        bridge_host=_get_str("BRIDGE_HOST") or defaults.bridge_host,
        bridge_port=_get_number("BRIDGE_PORT", defaults.bridge_port, int),
        bridge_ping_interval=_get_number("BRIDGE_PING_INTERVAL", defaults.bridge_ping_interval, float),
        dedup_capacity=_get_number("CHAT_DEDUP_CAPACITY", defaults.dedup_capacity, int),
        max_messages_per_second=_get_number("CHAT_MAX_PER_SECOND", defaults.max_messages_per_second, int),
        stats_interval=_get_number("CHAT_STATS_INTERVAL", defaults.stats_interval, float),
        reconnect_delay=_get_number("RECONNECT_DELAY", defaults.reconnect_delay, float),
        max_reconnect_attempts=_get_number("MAX_RECONNECT_ATTEMPTS", defaults.max_reconnect_attempts, int),
        twitch_channel=_get_str("TWITCH_CHANNEL"),
        twitch_oauth_token=_get_str("TWITCH_OAUTH_TOKEN"),
        twitch_username=_get_str("TWITCH_USERNAME"),
        twitch_use_ssl=_get_bool("TWITCH_USE_SSL", defaults.twitch_use_ssl),
        chzzk_channel_id=_get_str("CHZZK_CHANNEL_ID"),
        chzzk_access_token=_get_str("CHZZK_ACCESS_TOKEN"),
    )
