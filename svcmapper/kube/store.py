from typing import Any, Dict, Iterable, List, Optional
import threading
import logging

from .keys import meta_namespace_key
from ..errors import ViewNotSyncedError

class ResourceStore:
    """클러스터 오브젝트의 로컬 인덱스 (읽기 모델)

    informer가 채우고, 재조정기와 조회 API는 읽기만 합니다.
    초기 목록 동기화가 끝나기 전 조회는 ViewNotSyncedError를 발생시킵니다.
    """
    def __init__(self, resource: str):
        self.resource = resource
        # "namespace/name" -> 오브젝트
        self._items: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._synced = False
        self.logger = logging.getLogger(__name__)

    def has_synced(self) -> bool:
        return self._synced

    def mark_synced(self) -> None:
        self._synced = True

    def replace(self, objects: Iterable[Any]) -> Dict[str, Any]:
        """전체 목록으로 인덱스 교체 (list 결과 반영)

        Returns:
            교체 이전의 인덱스 (삭제 이벤트 계산용)
        """
        new_items = {meta_namespace_key(obj): obj for obj in objects}
        with self._lock:
            old_items = self._items
            self._items = new_items
            self._synced = True
        return old_items

    def upsert(self, obj: Any) -> Optional[Any]:
        """오브젝트 추가/갱신. 이전 값을 반환"""
        key = meta_namespace_key(obj)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = obj
        return old

    def remove(self, obj: Any) -> Optional[Any]:
        key = meta_namespace_key(obj)
        with self._lock:
            return self._items.pop(key, None)

    def get_by_key(self, key: str) -> Optional[Any]:
        """키로 오브젝트 조회. 없으면 None (에러 아님)"""
        if not self._synced:
            raise ViewNotSyncedError(self.resource)
        with self._lock:
            return self._items.get(key)

    def list_all(self) -> List[Any]:
        if not self._synced:
            raise ViewNotSyncedError(self.resource)
        with self._lock:
            return list(self._items.values())

    def list_keys(self) -> List[str]:
        with self._lock:
            return list(self._items.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
