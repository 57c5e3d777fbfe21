"""키 기반 작업 큐

엔드포인트 키를 중복 제거하여 직렬화하고, 실패한 키는 지수 백오프로 재시도합니다.

상태:
- pending: 처리 대기 중인 키 (FIFO, 중복 없음)
- processing: 워커가 처리 중인 키
- dirty: 처리 중에 다시 추가된 키 (done() 시 한 번만 재투입)
"""

from collections import deque
from typing import Deque, Dict, Optional, Set, Tuple
import asyncio
import logging

from ..config.settings import settings
from ..metrics.prometheus import WORKQUEUE_DEPTH, WORKQUEUE_RETRIES

class RateLimitingQueue:
    """중복 제거, 처리 중 배타성, 재시도 백오프를 지원하는 비동기 작업 큐"""

    def __init__(self, base_delay: Optional[float] = None, max_delay: Optional[float] = None):
        self.base_delay = base_delay if base_delay is not None else settings.queue_base_delay
        self.max_delay = max_delay if max_delay is not None else settings.queue_max_delay
        self.logger = logging.getLogger(__name__)

        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._delayed: Dict[str, asyncio.TimerHandle] = {}
        self._shutting_down = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        """키 추가 (이미 대기 중이면 하나로 합쳐짐)"""
        if self._shutting_down:
            self.logger.debug(f"[무시] 종료 중 추가 요청: {key}")
            return
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            # 처리 중이면 done() 이후 다시 투입
            return
        self._queue.append(key)
        self._idle.clear()
        WORKQUEUE_DEPTH.set(len(self._queue))
        self._notify()

    async def get(self) -> Tuple[Optional[str], bool]:
        """다음 키를 꺼냄

        대기 중인 키가 없으면 블록됩니다. 종료 후에도 남은 키는 계속 반환하고,
        큐가 비면 (None, True)를 반환합니다.

        Returns:
            (키, 종료 여부)
        """
        while not self._queue:
            if self._shutting_down:
                return None, True
            self._wakeup.clear()
            await self._wakeup.wait()

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        WORKQUEUE_DEPTH.set(len(self._queue))
        return key, False

    def done(self, key: str) -> None:
        """처리 완료 표시. 처리 중 다시 추가된 키는 재투입"""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            WORKQUEUE_DEPTH.set(len(self._queue))
            self._notify()
        self._update_idle()

    def add_rate_limited(self, key: str) -> None:
        """실패한 키를 백오프 후 재투입"""
        if self._shutting_down:
            return
        delay = self.when(key)
        WORKQUEUE_RETRIES.inc()
        self.logger.debug(f"[재시도 예약] {key} ({delay:.3f}초 후)")
        self.add_after(key, delay)

    def add_after(self, key: str, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        if key in self._delayed:
            self._delayed[key].cancel()
        loop = asyncio.get_running_loop()
        self._delayed[key] = loop.call_later(delay, self._fire_delayed, key)
        self._idle.clear()

    def when(self, key: str) -> float:
        """키의 다음 재시도 지연 시간 계산 (실패 횟수 증가)"""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def forget(self, key: str) -> None:
        """재시도 횟수 초기화"""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def shutdown(self) -> None:
        """새 키 수신 중단 및 대기 중인 get() 해제"""
        if self._shutting_down:
            return
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._notify()
        self._update_idle()

    async def shutdown_with_drain(self) -> None:
        """종료 후 대기/처리 중인 키가 모두 끝날 때까지 대기"""
        self.shutdown()
        await self._idle.wait()

    def _fire_delayed(self, key: str) -> None:
        self._delayed.pop(key, None)
        self.add(key)
        self._update_idle()

    def _notify(self) -> None:
        self._wakeup.set()

    def _update_idle(self) -> None:
        if not self._queue and not self._processing and not self._delayed:
            self._idle.set()
