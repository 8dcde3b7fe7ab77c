"""초당 메시지 수 제한 (모든 소스 공용 전역 상한)"""

import threading
import time
from typing import Callable

DEFAULT_MAX_PER_SECOND = 20


class RateGate:
    """1초 단위 버킷 카운터

    벽시계 초가 바뀌면 카운터를 0으로 되돌린다. 거절된 호출도 카운트는 올림(통계용).
    """

    def __init__(
        self,
        max_per_second: int = DEFAULT_MAX_PER_SECOND,
        clock: Callable[[], float] = time.time,
    ):
        if max_per_second < 1:
            raise ValueError(f"max_per_second는 1 이상이어야 합니다: {max_per_second}")
        self.max_per_second = max_per_second
        self._clock = clock
        self._lock = threading.Lock()
        self._bucket = int(clock())
        self._count = 0

    def admit(self) -> bool:
        """메시지 하나를 통과시킬지 판단. False면 전달하면 안 됨"""
        with self._lock:
            second = int(self._clock())
            if second != self._bucket:
                self._bucket = second
                self._count = 0
            self._count += 1
            return self._count <= self.max_per_second

    @property
    def current_count(self) -> int:
        """현재 1초 버킷에서 들어온 호출 수 (거절 포함)"""
        with self._lock:
            return self._count
