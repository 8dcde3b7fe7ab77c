"""
채팅 버스: 여러 인제스터의 메시지를 하나의 스트림으로 합침 (fan-in)

수신 → 중복 제거(DedupCache) → 초당 상한(RateGate) → 구독자 전달.
전달은 메시지를 넘겨준 인제스터의 스레드/루프에서 동기적으로 실행된다 (통계 로그만 별도 스레드).
전역 싱글턴이 아니라 조립 지점(app.py)이 만들어서 넘겨준다.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from .base_client import ChatIngestor, ChatMessage
from .dedup_cache import DEFAULT_CAPACITY, DedupCache
from .rate_gate import DEFAULT_MAX_PER_SECOND, RateGate

logger = logging.getLogger(__name__)

Subscriber = Callable[[ChatMessage], Union[None, Awaitable[Any]]]

DEFAULT_STATS_INTERVAL = 60.0


@dataclass(frozen=True)
class BusStatistics:
    """버스 누적 통계"""
    received: int = 0
    duplicates: int = 0
    rate_limited: int = 0
    delivered: int = 0
    subscriber_errors: int = 0
    cache_size: int = 0

    @property
    def drop_rate(self) -> float:
        """버려진 메시지 비율 (%)"""
        if self.received == 0:
            return 0.0
        return (self.duplicates + self.rate_limited) / self.received * 100


class ChatBus:
    """인제스터 fan-in 코디네이터"""

    def __init__(
        self,
        cache_capacity: int = DEFAULT_CAPACITY,
        max_messages_per_second: int = DEFAULT_MAX_PER_SECOND,
        stats_interval: float = DEFAULT_STATS_INTERVAL,
        clock: Callable[[], float] = time.time,
        on_statistics: Optional[Callable[[BusStatistics], None]] = None,
    ):
        """
        Args:
            cache_capacity: 중복 제거 캐시 용량
            max_messages_per_second: 모든 소스 합산 초당 전달 상한
            stats_interval: 통계 로그 주기 (초). 0 이하면 끔
            clock: 초 단위 시계 (테스트용 주입)
            on_statistics: 통계 주기마다 호출할 콜백
        """
        self._cache = DedupCache(cache_capacity)
        self._gate = RateGate(max_messages_per_second, clock=clock)
        self._on_statistics = on_statistics

        # 구독자/인제스터 목록은 같은 락으로 보호, 전달 시에는 스냅샷을 순회
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._ingestors: list[ChatIngestor] = []

        self._stats_lock = threading.Lock()
        self._received = 0
        self._duplicates = 0
        self._rate_limited = 0
        self._delivered = 0
        self._subscriber_errors = 0

        self._disposed = False
        self._stats_stop = threading.Event()
        self._stats_thread: Optional[threading.Thread] = None
        if stats_interval > 0:
            self._stats_thread = threading.Thread(
                target=self._stats_loop,
                args=(stats_interval,),
                name="chat-bus-stats",
                daemon=True,
            )
            self._stats_thread.start()
        logger.debug("[ChatBus] 초기화 (cache=%d, max/s=%d)", cache_capacity, max_messages_per_second)

    # ---- 인제스터 연결 ----

    def attach(self, ingestor: ChatIngestor) -> None:
        """인제스터 메시지 구독 (같은 인제스터 두 번 붙여도 한 번만)"""
        with self._lock:
            if self._disposed or ingestor in self._ingestors:
                return
            self._ingestors.append(ingestor)
        ingestor.add_message_handler(self.publish)
        logger.info("[ChatBus] 인제스터 연결: %s (%s)", ingestor.platform_name, ingestor.identifier)

    def detach(self, ingestor: ChatIngestor) -> None:
        """인제스터 구독 해제 (연결된 적 없으면 무시)"""
        with self._lock:
            if ingestor not in self._ingestors:
                return
            self._ingestors.remove(ingestor)
        ingestor.remove_message_handler(self.publish)
        logger.info("[ChatBus] 인제스터 해제: %s (%s)", ingestor.platform_name, ingestor.identifier)

    @property
    def attached(self) -> tuple[ChatIngestor, ...]:
        with self._lock:
            return tuple(self._ingestors)

    # ---- 구독자 ----

    def subscribe(self, handler: Subscriber) -> None:
        with self._lock:
            if handler not in self._subscribers:
                self._subscribers.append(handler)

    def unsubscribe(self, handler: Subscriber) -> None:
        with self._lock:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # ---- 메시지 처리 ----

    def publish(self, message: Optional[ChatMessage]) -> bool:
        """
        메시지 한 건 처리

        Returns:
            True: 구독자에게 전달됨, False: 중복/속도 제한/폐기된 버스
        """
        if self._disposed or message is None:
            return False

        with self._stats_lock:
            self._received += 1

        if not self._cache.try_add(message.dedup_key):
            with self._stats_lock:
                self._duplicates += 1
            logger.debug("[ChatBus] 중복 메시지 무시: %s", message.dedup_key)
            return False

        if not self._gate.admit():
            with self._stats_lock:
                self._rate_limited += 1
            return False

        with self._lock:
            subscribers = list(self._subscribers)
        for handler in subscribers:
            self._dispatch(handler, message)

        with self._stats_lock:
            self._delivered += 1
        return True

    def _dispatch(self, handler: Subscriber, message: ChatMessage) -> None:
        """구독자 하나 호출. 예외는 기록만 하고 삼킴"""
        try:
            result = handler(message)
            if asyncio.iscoroutine(result):
                self._schedule(result)
        except Exception as e:
            self._count_subscriber_error()
            logger.error("[ChatBus] 구독자 오류 (%s): %s", getattr(handler, "__qualname__", handler), e, exc_info=True)

    def _schedule(self, coro) -> None:
        """코루틴 구독자는 실행 중인 루프의 태스크로 분리"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self._count_subscriber_error()
            logger.warning("[ChatBus] 실행 중인 이벤트 루프가 없어 비동기 구독자를 건너뜀")
            return
        task = loop.create_task(coro)
        task.add_done_callback(self._on_subscriber_task_done)

    def _on_subscriber_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._count_subscriber_error()
            logger.error("[ChatBus] 비동기 구독자 오류: %s", exc, exc_info=exc)

    def _count_subscriber_error(self) -> None:
        with self._stats_lock:
            self._subscriber_errors += 1

    # ---- 통계 ----

    def get_statistics(self) -> BusStatistics:
        with self._stats_lock:
            return BusStatistics(
                received=self._received,
                duplicates=self._duplicates,
                rate_limited=self._rate_limited,
                delivered=self._delivered,
                subscriber_errors=self._subscriber_errors,
                cache_size=len(self._cache),
            )

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self._received = 0
            self._duplicates = 0
            self._rate_limited = 0
            self._delivered = 0
            self._subscriber_errors = 0

    def _stats_loop(self, interval: float) -> None:
        while not self._stats_stop.wait(interval):
            self._report_statistics()

    def _report_statistics(self) -> None:
        stats = self.get_statistics()
        logger.info(
            "[ChatBus] 통계: received=%d duplicate=%d rate_limited=%d delivered=%d cache=%d",
            stats.received,
            stats.duplicates,
            stats.rate_limited,
            stats.delivered,
            stats.cache_size,
        )
        if self._on_statistics:
            try:
                self._on_statistics(stats)
            except Exception as e:
                logger.error("[ChatBus] 통계 콜백 오류: %s", e, exc_info=True)

    # ---- 정리 ----

    def dispose(self) -> None:
        """모든 인제스터 해제, 캐시 비우기, 통계 타이머 정지. 여러 번 호출해도 안전"""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            ingestors = list(self._ingestors)
            self._ingestors.clear()
            self._subscribers.clear()

        for ingestor in ingestors:
            try:
                ingestor.remove_message_handler(self.publish)
            except Exception as e:
                logger.warning("[ChatBus] 인제스터 해제 오류: %s", e)

        self._cache.clear()
        self._stats_stop.set()
        thread = self._stats_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._stats_thread = None
        logger.debug("[ChatBus] 종료됨")

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def __enter__(self) -> "ChatBus":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()
