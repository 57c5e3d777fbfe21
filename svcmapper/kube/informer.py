from kubernetes_asyncio import client, watch
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging

from .keys import meta_namespace_key
from .store import ResourceStore
from ..config.settings import settings

Handler = Callable[..., None]

class ResourceInformer:
    """list + watch로 하나의 ResourceStore를 최신 상태로 유지

    list 결과로 인덱스를 교체한 뒤 list의 리소스 버전부터 watch 스트림을 엽니다.
    스트림이 타임아웃으로 끝나거나 리소스 버전이 만료(410)되면 다시 list부터 시작합니다.
    """
    INITIAL_BACKOFF = 1  # 초기 백오프 시간 (초)
    MAX_BACKOFF = 60  # 최대 백오프 시간 (초)

    def __init__(self, resource: str, list_func: Callable, store: ResourceStore,
                 watch_timeout: Optional[int] = None, **list_kwargs):
        self.resource = resource
        self.list_func = list_func
        self.store = store
        self.watch_timeout = watch_timeout if watch_timeout is not None else settings.watch_timeout
        self.list_kwargs = list_kwargs
        self.logger = logging.getLogger(__name__)
        self._running = True
        self._last_resource_version: Optional[str] = None
        self._synced = asyncio.Event()
        self._on_add: List[Handler] = []
        self._on_update: List[Handler] = []
        self._on_delete: List[Handler] = []

    def add_event_handler(self,
                          on_add: Optional[Handler] = None,
                          on_update: Optional[Handler] = None,
                          on_delete: Optional[Handler] = None) -> None:
        """이벤트 핸들러 등록

        on_add(obj), on_update(old, new), on_delete(obj) 형태로 호출됩니다.
        """
        if on_add:
            self._on_add.append(on_add)
        if on_update:
            self._on_update.append(on_update)
        if on_delete:
            self._on_delete.append(on_delete)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    async def wait_for_sync(self, timeout: float) -> bool:
        """초기 list 완료 대기. 제한 시간 초과 시 False"""
        try:
            await asyncio.wait_for(self._synced.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self):
        """워쳐 정지"""
        self._running = False

    async def start(self):
        """리소스 모니터링 시작"""
        backoff = self.INITIAL_BACKOFF

        while self._running:
            try:
                if self._last_resource_version is None:
                    await self._relist()

                async with watch.Watch() as w:
                    async for event in w.stream(
                        self.list_func,
                        resource_version=self._last_resource_version,
                        timeout_seconds=self.watch_timeout,
                        **self.list_kwargs
                    ):
                        if not self._running:
                            break
                        self._handle_event(event)
                        backoff = self.INITIAL_BACKOFF

                # 스트림이 정상 종료(타임아웃)되면 다시 list부터 시작
                self.logger.info(
                    f"[재연결] {self.resource} 워치 스트림 타임아웃, 다시 list "
                    f"(마지막 버전: {self._last_resource_version})"
                )
                self._last_resource_version = None

            except asyncio.CancelledError:
                raise

            except client.exceptions.ApiException as e:
                if e.status == 410:  # Gone - 리소스 버전 만료
                    self.logger.warning(
                        f"[재시도] {self.resource} 리소스 버전 만료로 다시 list "
                        f"(만료된 버전: {self._last_resource_version})"
                    )
                    self._last_resource_version = None
                else:
                    self.logger.error(f"[오류] {self.resource} 쿠버네티스 API 오류: {e}")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.MAX_BACKOFF)

            except Exception as e:
                self.logger.error(f"[오류] {self.resource} 예상치 못한 오류 발생: {e}")
                self._last_resource_version = None
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.MAX_BACKOFF)

        self.logger.info(f"[종료] {self.resource} 모니터링 종료")

    async def _relist(self) -> None:
        """전체 목록으로 저장소 교체 후 차이를 이벤트로 전달"""
        result = await self.list_func(**self.list_kwargs)
        items = result.items or []
        old_items = self.store.replace(items)

        for obj in items:
            old = old_items.pop(meta_namespace_key(obj), None)
            if old is None:
                self._dispatch(self._on_add, obj)
            else:
                self._dispatch(self._on_update, old, obj)
        # 새 목록에 없는 오브젝트는 삭제된 것으로 처리
        for obj in old_items.values():
            self._dispatch(self._on_delete, obj)

        self._last_resource_version = result.metadata.resource_version
        self._synced.set()
        self.logger.info(
            f"[동기화] {self.resource} {len(items)}개 "
            f"(현재 버전: {self._last_resource_version})"
        )

    def _handle_event(self, event: Dict[str, Any]) -> None:
        """watch 이벤트 처리"""
        event_type = event['type']
        obj = event['object']
        if event_type == 'BOOKMARK':
            self._last_resource_version = obj.metadata.resource_version
            return

        self.logger.debug(f"[이벤트] {self.resource} {meta_namespace_key(obj)} - {event_type}")

        if event_type == 'ADDED' or event_type == 'MODIFIED':
            old = self.store.upsert(obj)
            if old is None:
                self._dispatch(self._on_add, obj)
            else:
                self._dispatch(self._on_update, old, obj)
        elif event_type == 'DELETED':
            self.store.remove(obj)
            self._dispatch(self._on_delete, obj)

        self._last_resource_version = obj.metadata.resource_version

    @staticmethod
    def _dispatch(handlers: List[Handler], *args) -> None:
        for handler in handlers:
            handler(*args)
