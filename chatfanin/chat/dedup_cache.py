"""
중복 메시지 제거용 LRU 캐시
키만 기억하며 메시지 내용은 보지 않음. 프로세스 메모리 안에서만 유지됨.
"""

import threading
from collections import OrderedDict

DEFAULT_CAPACITY = 10_000


class DedupCache:
    """용량이 고정된 LRU 키 집합 (스레드 안전)"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity는 1 이상이어야 합니다: {capacity}")
        self.capacity = capacity
        self._keys: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def try_add(self, key: str) -> bool:
        """
        키 등록 시도

        Returns:
            True: 처음 보는 키 (등록됨), False: 이미 있는 키 (최근 사용으로 갱신, 중복)
        """
        with self._lock:
            if key in self._keys:
                self._keys.move_to_end(key)
                return False
            if len(self._keys) >= self.capacity:
                # 가장 오래 안 쓰인 키 하나만 제거
                self._keys.popitem(last=False)
            self._keys[key] = None
            return True

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
