"""서비스 매핑 재조정기

Endpoints 변경 알림을 받아 영향받는 노드를 찾고, 해당 노드의 번들을
현재 뷰 상태로부터 처음부터 다시 계산해 매핑 캐시에 게시합니다.

처리 흐름:
1. informer 이벤트 핸들러: Endpoints 키를 작업 큐에 추가만 함
2. 워커: 큐에서 키를 꺼내 sync_endpoints(key) 실행
3. sync_endpoints: 현재/이전 노드 집합 계산 -> 노드별 번들 재계산 -> 캐시에 교체 저장
4. 실패 시 작업 큐의 백오프 재시도 (max_retries 초과 시 포기)
5. resync_period마다 전체 키를 재투입해 번들 TTL 갱신
6. 노드를 몰라 건너뛴 파드는 파드 뷰에 노드가 잡히면 해당 키를 재투입
"""

import asyncio
import time
from typing import Any, Dict, Optional, Set, Tuple

from ..cache.store import MappingCache, build_cache_key
from ..config.settings import settings
from ..errors import StartupError
from ..kube.keys import meta_namespace_key, split_meta_namespace_key
from ..kube.store import ResourceStore
from ..mapper.models import MetadataMapperBundle, ServicesMapper
from ..metrics.prometheus import CACHED_BUNDLES, RECONCILE_DURATION, RECONCILE_TOTAL
from ..queue.workqueue import RateLimitingQueue
from ..utils.logging import get_logger, reconcile_context

class MetadataController:
    """Endpoints/Node를 감시해 노드별 서비스 매핑 번들을 유지하는 컨트롤러"""

    def __init__(self,
                 node_store: ResourceStore,
                 endpoints_store: ResourceStore,
                 pod_store: Optional[ResourceStore],
                 cache: MappingCache,
                 queue: Optional[RateLimitingQueue] = None,
                 cache_prefix: Optional[str] = None,
                 cache_ttl: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 resync_period: Optional[float] = None,
                 processed: Optional[asyncio.Queue] = None):
        """
        Args:
            node_store: 노드 뷰
            endpoints_store: 엔드포인트 뷰
            pod_store: 파드 뷰 (주소에 노드 이름이 없을 때 호스트 조회용, 없으면 생략)
            cache: 번들을 게시할 매핑 캐시
            queue: 작업 큐 (기본값: 설정값으로 생성)
            cache_prefix: 캐시 키 접두어
            cache_ttl: 번들 TTL (초)
            max_retries: 키별 최대 재시도 횟수
            resync_period: 전체 엔드포인트 키 재투입 주기 (초, TTL보다 짧아야 함)
            processed: 재조정이 끝난 키를 알려줄 큐 (테스트/관측용)
        """
        self.node_store = node_store
        self.endpoints_store = endpoints_store
        self.pod_store = pod_store
        self.cache = cache
        self.queue = queue if queue is not None else RateLimitingQueue()
        self.cache_prefix = cache_prefix if cache_prefix is not None else settings.cache_prefix
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.cache_ttl
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.processed = processed
        self.logger = get_logger(__name__)

        period = resync_period if resync_period is not None else settings.resync_period
        if period >= self.cache_ttl:
            self.logger.warning(
                f"[설정] 재동기화 주기({period}초)가 TTL({self.cache_ttl}초) 이상이라 TTL의 절반으로 조정"
            )
            period = self.cache_ttl / 2
        self.resync_period = period

        # Endpoints 키 -> 마지막으로 기여한 노드 이름 집합 (삭제 시 영향 노드 계산용)
        self._endpoints_nodes: Dict[str, Set[str]] = {}
        # 파드 키 -> 노드를 몰라 주소를 건너뛴 Endpoints 키 집합
        self._waiting_pods: Dict[str, Set[str]] = {}

    # ---- informer 이벤트 핸들러 ----

    def register(self, node_informer, endpoints_informer, pod_informer=None) -> None:
        """informer에 이벤트 핸들러 등록"""
        node_informer.add_event_handler(on_add=self.add_node, on_delete=self.delete_node)
        endpoints_informer.add_event_handler(
            on_add=self.add_endpoints,
            on_update=self.update_endpoints,
            on_delete=self.delete_endpoints,
        )
        if pod_informer is not None:
            pod_informer.add_event_handler(
                on_add=self.add_pod,
                on_update=self.update_pod,
                on_delete=self.delete_pod,
            )

    def add_endpoints(self, obj: Any) -> None:
        self.queue.add(meta_namespace_key(obj))

    def update_endpoints(self, old: Any, new: Any) -> None:
        # 재동기화로 같은 버전이 다시 들어오면 무시
        if old.metadata.resource_version and old.metadata.resource_version == new.metadata.resource_version:
            return
        self.queue.add(meta_namespace_key(new))

    def delete_endpoints(self, obj: Any) -> None:
        self.queue.add(meta_namespace_key(obj))

    def add_node(self, obj: Any) -> None:
        """새 노드에 빈 번들을 미리 생성 (이미 있으면 유지)"""
        cache_key = build_cache_key(self.cache_prefix, obj.metadata.name)
        _, found = self.cache.get(cache_key)
        if not found:
            self.cache.put(cache_key, MetadataMapperBundle(), self.cache_ttl)
            self.logger.debug(f"[노드 추가] {obj.metadata.name} 빈 번들 생성")

    def delete_node(self, obj: Any) -> None:
        """삭제된 노드의 번들 제거"""
        node_name = obj.metadata.name
        self.cache.delete(build_cache_key(self.cache_prefix, node_name))
        for nodes in self._endpoints_nodes.values():
            nodes.discard(node_name)
        self.logger.info(f"[노드 삭제] {node_name} 번들 제거")

    def add_pod(self, obj: Any) -> None:
        self._requeue_waiting(obj)

    def update_pod(self, old: Any, new: Any) -> None:
        self._requeue_waiting(new)

    def delete_pod(self, obj: Any) -> None:
        self._waiting_pods.pop(meta_namespace_key(obj), None)

    def _requeue_waiting(self, pod: Any) -> None:
        """노드가 정해진 파드를 기다리던 Endpoints 키를 다시 큐에 추가"""
        if pod.spec is None or not pod.spec.node_name:
            return
        pod_key = meta_namespace_key(pod)
        for key in sorted(self._waiting_pods.pop(pod_key, ())):
            self.logger.debug(f"[재투입] {key} (파드 {pod_key} -> {pod.spec.node_name})")
            self.queue.add(key)

    def resync(self) -> int:
        """뷰의 모든 Endpoints 키를 큐에 추가

        변경이 없어도 번들을 다시 게시해 TTL 만료를 막습니다.

        Returns:
            추가한 키 개수
        """
        keys = self.endpoints_store.list_keys()
        for key in keys:
            self.queue.add(key)
        return len(keys)

    # ---- 실행 ----

    def has_synced(self) -> bool:
        stores = [self.node_store, self.endpoints_store]
        if self.pod_store is not None:
            stores.append(self.pod_store)
        return all(store.has_synced() for store in stores)

    async def wait_for_cache_sync(self, timeout: float, interval: float = 0.1) -> bool:
        """모든 뷰의 초기 동기화 대기. 제한 시간 초과 시 False"""
        deadline = time.monotonic() + timeout
        while not self.has_synced():
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(interval)
        return True

    async def run(self, workers: int, stop_event: asyncio.Event,
                  sync_timeout: Optional[float] = None) -> None:
        """뷰 동기화 후 워커를 실행하고, 종료 신호 시 큐를 비운 뒤 반환

        Raises:
            StartupError: 뷰가 제한 시간 내에 동기화되지 않은 경우
        """
        timeout = sync_timeout if sync_timeout is not None else settings.informer_sync_timeout
        self.logger.info("[시작] 뷰 동기화 대기")
        if not await self.wait_for_cache_sync(timeout):
            raise StartupError(f"뷰가 {timeout}초 내에 동기화되지 않음")

        self.logger.info(f"[실행] 워커 {workers}개 시작")
        tasks = [asyncio.create_task(self._worker(i)) for i in range(workers)]
        resync_task = asyncio.create_task(self._resync_loop())
        try:
            await stop_event.wait()
        finally:
            self.logger.info("[종료] 작업 큐 정리 시작")
            resync_task.cancel()
            await asyncio.gather(resync_task, return_exceptions=True)
            await self.queue.shutdown_with_drain()
            await asyncio.gather(*tasks)
            self.logger.info("[종료] 워커 종료")

    async def _resync_loop(self) -> None:
        """주기적으로 전체 키를 다시 큐에 추가"""
        while True:
            await asyncio.sleep(self.resync_period)
            count = self.resync()
            self.logger.debug(f"[재동기화] 엔드포인트 {count}개 재투입")

    async def _worker(self, worker_id: int) -> None:
        self.logger.debug(f"[워커 {worker_id}] 시작")
        while True:
            key, shutdown = await self.queue.get()
            if shutdown:
                break
            with reconcile_context(key=key):
                try:
                    self.process_key(key)
                finally:
                    self.queue.done(key)
            # 다른 태스크(informer 등)에 실행 기회 양보
            await asyncio.sleep(0)
        self.logger.debug(f"[워커 {worker_id}] 종료")

    def process_key(self, key: str) -> bool:
        """키 하나를 재조정하고 결과에 따라 재시도 여부를 결정

        Returns:
            성공 여부
        """
        started = time.monotonic()
        try:
            self.sync_endpoints(key)
        except Exception as e:
            self._handle_error(key, e)
            return False
        finally:
            RECONCILE_DURATION.observe(time.monotonic() - started)

        self.queue.forget(key)
        RECONCILE_TOTAL.labels(result="success").inc()
        if self.processed is not None:
            self.processed.put_nowait(key)
        return True

    def _handle_error(self, key: str, error: Exception) -> None:
        retries = self.queue.num_requeues(key)
        if retries < self.max_retries:
            RECONCILE_TOTAL.labels(result="error").inc()
            self.logger.warning(f"[재시도] {key} 재조정 실패 ({retries + 1}/{self.max_retries}): {error}")
            self.queue.add_rate_limited(key)
            return

        RECONCILE_TOTAL.labels(result="dropped").inc()
        self.logger.error(f"[포기] {key} 최대 재시도 횟수 초과: {error}")
        self.queue.forget(key)

    # ---- 재조정 ----

    def sync_endpoints(self, key: str) -> None:
        """Endpoints 키 하나에 대해 영향받는 모든 노드 번들을 재계산하여 게시

        결과는 현재 뷰 상태만의 함수이므로 같은 상태에서 여러 번 실행해도 동일합니다.
        번들은 모두 로컬에서 완성한 뒤 게시하며, 계산 중 예외가 나면 아무것도 쓰지 않습니다.
        """
        try:
            split_meta_namespace_key(key)
        except ValueError as e:
            self.logger.error(f"[스킵] 잘못된 키: {e}")
            return

        endpoints = self.endpoints_store.get_by_key(key)
        previous_nodes = self._endpoints_nodes.get(key, set())
        if endpoints is None:
            self.logger.info(f"[삭제] {key} 엔드포인트 없음 (이전 노드: {sorted(previous_nodes)})")
            current_nodes: Set[str] = set()
        else:
            current_nodes = self._nodes_for_endpoints(endpoints)

        affected = current_nodes | previous_nodes
        mappers = self._build_mappers(affected)

        for node_name in sorted(affected):
            with reconcile_context(node=node_name):
                bundle = MetadataMapperBundle(services=mappers[node_name])
                self.cache.put(build_cache_key(self.cache_prefix, node_name), bundle, self.cache_ttl)
                self.logger.debug(f"[게시] 네임스페이스 {len(bundle.services)}개")

        if current_nodes:
            self._endpoints_nodes[key] = current_nodes
        else:
            self._endpoints_nodes.pop(key, None)

        CACHED_BUNDLES.set(len(self.cache))
        self.logger.debug(f"[동기화 완료] 영향 노드: {sorted(affected)}")

    def _nodes_for_endpoints(self, endpoints: Any) -> Set[str]:
        nodes = set()
        for node_name, _, _ in self._iter_pod_addresses(endpoints):
            nodes.add(node_name)
        return nodes

    def _build_mappers(self, nodes: Set[str]) -> Dict[str, ServicesMapper]:
        """지정한 노드들의 ServicesMapper를 전체 Endpoints 목록으로부터 새로 계산"""
        mappers = {node_name: ServicesMapper() for node_name in nodes}
        if not nodes:
            return mappers

        for endpoints in self.endpoints_store.list_all():
            service_name = endpoints.metadata.name
            for node_name, namespace, pod_name in self._iter_pod_addresses(endpoints):
                mapper = mappers.get(node_name)
                if mapper is not None:
                    mapper.set(namespace, pod_name, service_name)

        for mapper in mappers.values():
            mapper.prune()
        return mappers

    def _iter_pod_addresses(self, endpoints: Any):
        """(노드, 네임스페이스, 파드) 단위로 주소 순회. 해석할 수 없는 주소는 건너뜀"""
        namespace = endpoints.metadata.namespace
        for subset in endpoints.subsets or []:
            for address in subset.addresses or []:
                resolved = self.resolve_address(namespace, address)
                if resolved is not None:
                    yield resolved
                    continue
                ref = address.target_ref
                if ref is not None and ref.kind == settings.POD_KIND and ref.name:
                    # 파드 뷰에 노드가 잡히면 add_pod/update_pod에서 다시 재조정
                    pod_key = f"{ref.namespace or namespace}/{ref.name}"
                    self._waiting_pods.setdefault(pod_key, set()).add(meta_namespace_key(endpoints))

    def resolve_address(self, namespace: str, address: Any) -> Optional[Tuple[str, str, str]]:
        """엔드포인트 주소를 (노드, 네임스페이스, 파드)로 해석

        1. 주소에 노드 이름이 있으면 사용
        2. 없으면 파드 뷰에서 참조 파드의 호스트 조회
        3. 둘 다 안 되면 None (아직 스케줄되지 않은 파드 등)
        """
        ref = address.target_ref
        if ref is None or ref.kind != settings.POD_KIND or not ref.name:
            return None
        pod_namespace = ref.namespace or namespace

        node_name = address.node_name
        if not node_name and self.pod_store is not None:
            pod = self.pod_store.get_by_key(f"{pod_namespace}/{ref.name}")
            if pod is not None and pod.spec is not None:
                node_name = pod.spec.node_name

        if not node_name:
            self.logger.debug(f"[스킵] 노드를 알 수 없는 주소: {pod_namespace}/{ref.name}")
            return None
        return node_name, pod_namespace, ref.name
