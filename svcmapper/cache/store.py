from typing import Any, List, NamedTuple, Optional, Tuple
import threading
import logging

from cachetools import TLRUCache


def build_cache_key(prefix: str, node_name: str) -> str:
    """노드 번들의 캐시 키 생성 (예: "KubernetesMetadataMapping:node:node1")"""
    return f"{prefix}:node:{node_name}"


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _time_to_use(key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MappingCache:
    """항목별 TTL을 갖는 프로세스 공용 키-값 저장소

    cachetools는 스레드 안전하지 않으므로 모든 접근을 락으로 감쌉니다.
    값은 통째로 교체되며 제자리 수정은 지원하지 않습니다.
    """

    def __init__(self, maxsize: int = 16384, timer=None):
        kwargs = {'timer': timer} if timer is not None else {}
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, **kwargs)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get(self, key: str) -> Tuple[Optional[Any], bool]:
        """값 조회

        Returns:
            (값, 존재 여부). 만료되었거나 없으면 (None, False)
        """
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return None, False
        return entry.value, True

    def put(self, key: str, value: Any, ttl: float) -> None:
        """값을 TTL과 함께 저장 (기존 값은 한 번에 교체)"""
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._cache[key] = _Entry(value, ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def keys(self) -> List[str]:
        """만료되지 않은 키 목록"""
        with self._lock:
            self._cache.expire()
            return list(self._cache.keys())

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)
