"""
채팅 인제스터 추상 기본 클래스
모든 소스(치지직, 트위치, 브라우저 확장 브리지 등)가 구현해야 하는 인터페이스와
플랫폼 공통 메시지/연결 상태 모델
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


class ChatPlatform(str, Enum):
    """채팅 소스 플랫폼"""
    YOUTUBE = "youtube"
    TWITCH = "twitch"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    KICK = "kick"
    CHZZK = "chzzk"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any, default: Optional["ChatPlatform"] = None) -> Optional["ChatPlatform"]:
        """문자열을 플랫폼으로 변환. 알 수 없으면 default 반환 (대소문자 무시)"""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return default
        try:
            return cls(value.strip().lower())
        except ValueError:
            return default


class ChatMessageType(str, Enum):
    """메시지 종류"""
    NORMAL = "normal"
    SUPERCHAT = "superchat"  # 후원, 비트 등
    SUBSCRIPTION = "subscription"
    GIFT = "gift"
    RAID = "raid"
    SYSTEM = "system"


class ConnectionState(str, Enum):
    """인제스터 연결 상태

    DISCONNECTED → CONNECTING → CONNECTED → RECONNECTING ⇄ CONNECTED
    ERROR 는 재시작 시 CONNECTING, stop() 시 DISCONNECTED 로 돌아감
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class ChatMessage:
    """채팅 메시지 (플랫폼 공통, 생성 후 불변)"""
    id: str  # 소스별 ID. 전역 유일하지 않음
    platform: ChatPlatform
    username: str  # 소문자 정규화된 핸들
    display_name: str
    text: str
    timestamp: datetime
    is_moderator: bool = False
    is_owner: bool = False
    is_verified: bool = False
    message_type: ChatMessageType = ChatMessageType.NORMAL
    avatar_url: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        """중복 제거 키: "<platform>:<id>" """
        return f"{self.platform.value}:{self.id}"

    @property
    def masked_username(self) -> str:
        """가려진 사용자명 (첫/마지막 글자만 노출)"""
        if len(self.username) < 3:
            return "***"
        return self.username[0] + "*" * (len(self.username) - 2) + self.username[-1]

    def __str__(self) -> str:
        return f"[{self.platform.value}] {self.display_name}: {self.text}"


@dataclass(frozen=True)
class StateChange:
    """상태 변경 이벤트"""
    old: ConnectionState
    new: ConnectionState
    reason: Optional[str] = None


class IngestorError(Exception):
    """인제스터 오류 (재연결 대상)"""


class FatalIngestorError(IngestorError):
    """재시도해도 소용없는 오류 (인증 실패, 포트 바인딩 실패 등). 바로 ERROR 상태로 전환"""


MessageHandler = Callable[[ChatMessage], Union[None, Awaitable[None]]]
StateHandler = Callable[["ChatIngestor", StateChange], None]


class ChatIngestor(ABC):
    """채팅 인제스터 추상 기본 클래스

    start()는 첫 await 이전에 CONNECTING으로 전환하고 감독 태스크를 띄운 뒤 바로 반환.
    감독 태스크가 connect → listen → (끊기면) 재연결을 반복한다.
    """

    def __init__(
        self,
        identifier: str,
        on_message: Optional[MessageHandler] = None,
        on_state_change: Optional[StateHandler] = None,
        reconnect_delay: float = 1.0,
        max_reconnect_attempts: int = 5,
        max_reconnect_delay: float = 60.0,
    ):
        """
        Args:
            identifier: 채널 ID, 채널명 등 (플랫폼별 형식 다를 수 있음)
            on_message: 메시지 수신 시 호출할 콜백 함수
            on_state_change: 상태 변경 시 호출할 콜백 함수
            reconnect_delay: 첫 재연결 지연 시간 (초). 시도마다 2배
            max_reconnect_attempts: 최대 재연결 시도 횟수
            max_reconnect_delay: 재연결 지연 상한 (초)
        """
        self.identifier = identifier
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.max_reconnect_delay = max_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._message_handlers: list[MessageHandler] = []
        self._state_handlers: list[StateHandler] = []
        self._task: Optional[asyncio.Task] = None
        self._accepting = False

        if on_message:
            self.add_message_handler(on_message)
        if on_state_change:
            self.add_state_handler(on_state_change)

    @property
    @abstractmethod
    def platform(self) -> ChatPlatform:
        """플랫폼 식별자"""
        pass

    @abstractmethod
    async def connect(self):
        """플랫폼별 연결 로직 구현. 실패 시 예외"""
        pass

    @abstractmethod
    async def disconnect(self):
        """플랫폼별 연결 종료 로직 구현. 연결이 없어도 안전해야 함"""
        pass

    @abstractmethod
    async def listen(self):
        """메시지 수신 루프 구현. 정상 반환 = 상대가 연결을 닫음, 예외 = 전송 오류"""
        pass

    @property
    def platform_name(self) -> str:
        return self.platform.value

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---- 이벤트 ----

    def add_message_handler(self, handler: MessageHandler) -> None:
        if handler not in self._message_handlers:
            self._message_handlers.append(handler)

    def remove_message_handler(self, handler: MessageHandler) -> None:
        try:
            self._message_handlers.remove(handler)
        except ValueError:
            pass

    def add_state_handler(self, handler: StateHandler) -> None:
        if handler not in self._state_handlers:
            self._state_handlers.append(handler)

    def remove_state_handler(self, handler: StateHandler) -> None:
        try:
            self._state_handlers.remove(handler)
        except ValueError:
            pass

    def _set_state(self, new_state: ConnectionState, reason: Optional[str] = None) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        change = StateChange(old=old_state, new=new_state, reason=reason)
        logger.debug(f"[{self.platform_name}] 상태 변경: {old_state.value} → {new_state.value} ({reason})")
        for handler in list(self._state_handlers):
            try:
                handler(self, change)
            except Exception as e:
                logger.error(f"[{self.platform_name}] 상태 변경 핸들러 오류: {e}", exc_info=True)

    async def _publish(self, message: ChatMessage) -> None:
        """메시지를 등록된 핸들러에 전달. stop() 이후에는 버림"""
        if not self._accepting:
            return
        for handler in list(self._message_handlers):
            try:
                cb = handler(message)
                if asyncio.iscoroutine(cb):
                    await cb
            except Exception as e:
                logger.error(f"[{self.platform_name}] 메시지 핸들러 오류: {e}", exc_info=True)

    # ---- 수명 주기 ----

    async def start(self):
        """클라이언트 시작 (이미 연결/연결 중이면 무시)"""
        if self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        ):
            logger.warning(f"[{self.platform_name}] 이미 연결되어 있거나 연결 중입니다")
            return

        # 관찰자가 전환을 놓치지 않도록 await 전에 상태부터 바꿈
        self._set_state(ConnectionState.CONNECTING)
        self._last_error = None
        self._accepting = True
        logger.info(f"[{self.platform_name}] 연결 시작: {self.identifier}")
        self._task = asyncio.create_task(self._run(), name=f"ingestor-{self.platform_name}-{self.identifier}")

    async def stop(self, timeout: float = 5.0):
        """클라이언트 중지. 어떤 상태에서 호출해도 안전하며 항상 DISCONNECTED로 끝남"""
        self._accepting = False
        task, self._task = self._task, None
        try:
            if task is not None and not task.done():
                task.cancel()
                _, pending = await asyncio.wait({task}, timeout=timeout)
                if pending:
                    logger.warning(f"[{self.platform_name}] 중지 대기 시간 초과 ({timeout}초)")
            await self.disconnect()
        except Exception as e:
            logger.error(f"[{self.platform_name}] 중지 중 오류: {e}", exc_info=True)
        finally:
            self._set_state(ConnectionState.DISCONNECTED, "stopped")
        logger.info(f"[{self.platform_name}] 중지됨: {self.identifier}")

    async def wait_until_stopped(self) -> None:
        """감독 태스크가 끝날 때까지 대기 (ERROR 로 끝나거나 stop() 호출)"""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def _run(self):
        """connect → listen → 재연결 반복"""
        try:
            try:
                await self.connect()
            except FatalIngestorError as e:
                await self._fail(str(e))
                return
            except Exception as e:
                logger.warning(f"[{self.platform_name}] 연결 실패: {e}")
                self._last_error = str(e)
                if not await self._reconnect(str(e)):
                    return
            else:
                self._set_state(ConnectionState.CONNECTED)
                logger.info(f"[{self.platform_name}] 연결 성공: {self.identifier}")

            while True:
                try:
                    await self.listen()
                    reason = "상대가 연결을 종료함"
                except FatalIngestorError as e:
                    await self._fail(str(e))
                    return
                except Exception as e:
                    reason = str(e) or type(e).__name__
                    self._last_error = reason
                    logger.warning(f"[{self.platform_name}] 수신 오류: {reason}")
                if not await self._reconnect(reason):
                    return
        except asyncio.CancelledError:
            logger.debug(f"[{self.platform_name}] 수신 루프 취소됨")

    async def _fail(self, reason: str) -> None:
        """ERROR 전환 전에 자체 전송 자원 정리"""
        self._last_error = reason
        logger.error(f"[{self.platform_name}] 복구 불가 오류: {reason}")
        try:
            await self.disconnect()
        except Exception as e:
            logger.warning(f"[{self.platform_name}] 연결 정리 중 오류: {e}")
        self._set_state(ConnectionState.ERROR, reason)

    async def _reconnect(self, reason: Optional[str] = None) -> bool:
        """재연결 시도 (지수 백오프) - 공통 로직"""
        self._set_state(ConnectionState.RECONNECTING, reason)

        for attempt in range(1, self.max_reconnect_attempts + 1):
            delay = min(self.reconnect_delay * (2 ** (attempt - 1)), self.max_reconnect_delay)
            logger.info(
                f"[{self.platform_name}] 재연결 시도 "
                f"{attempt}/{self.max_reconnect_attempts} "
                f"({delay}초 후)"
            )
            await asyncio.sleep(delay)

            try:
                await self.disconnect()
                await self.connect()
            except FatalIngestorError as e:
                await self._fail(str(e))
                return False
            except Exception as e:
                self._last_error = str(e)
                logger.warning(f"[{self.platform_name}] 재연결 실패 ({attempt}): {e}")
                continue

            self._set_state(ConnectionState.CONNECTED, "reconnected")
            logger.info(f"[{self.platform_name}] 재연결 성공")
            return True

        await self._fail(
            f"최대 재연결 시도 횟수 ({self.max_reconnect_attempts}) 초과: {self._last_error or reason}"
        )
        return False

    def _create_message(
        self,
        message_id: str,
        user: str,
        text: str,
        timestamp: Optional[datetime] = None,
        display_name: Optional[str] = None,
        is_moderator: bool = False,
        is_owner: bool = False,
        is_verified: bool = False,
        message_type: ChatMessageType = ChatMessageType.NORMAL,
        avatar_url: Optional[str] = None,
    ) -> ChatMessage:
        """ChatMessage 객체 생성 헬퍼 메서드 (사용자명 소문자 정규화)"""
        return ChatMessage(
            id=message_id,
            platform=self.platform,
            username=user.strip().lower(),
            display_name=display_name or user,
            text=text,
            timestamp=timestamp or datetime.now(),
            is_moderator=is_moderator,
            is_owner=is_owner,
            is_verified=is_verified,
            message_type=message_type,
            avatar_url=avatar_url,
        )
