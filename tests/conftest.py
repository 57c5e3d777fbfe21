import pytest
from kubernetes_asyncio.client import (
    V1Container,
    V1EndpointAddress,
    V1Endpoints,
    V1EndpointSubset,
    V1Node,
    V1ObjectMeta,
    V1ObjectReference,
    V1Pod,
    V1PodSpec,
)

from svcmapper.cache.store import MappingCache
from svcmapper.controller.metadata import MetadataController
from svcmapper.kube.store import ResourceStore
from svcmapper.queue.workqueue import RateLimitingQueue

@pytest.fixture
def make_pod():
    """파드 오브젝트 생성 fixture"""
    def _make(namespace, name, node_name=None):
        return V1Pod(
            metadata=V1ObjectMeta(namespace=namespace, name=name),
            spec=V1PodSpec(node_name=node_name, containers=[V1Container(name="nginx")]),
        )
    return _make

@pytest.fixture
def make_node():
    """노드 오브젝트 생성 fixture"""
    def _make(name):
        return V1Node(metadata=V1ObjectMeta(name=name))
    return _make

@pytest.fixture
def make_address():
    """엔드포인트 주소 생성 fixture

    node_name이 None이면 파드 뷰를 통해 노드를 찾아야 하는 주소가 됩니다.
    """
    def _make(pod, node_name=None, ip="10.0.0.1"):
        return V1EndpointAddress(
            ip=ip,
            node_name=node_name,
            target_ref=V1ObjectReference(
                kind="Pod",
                namespace=pod.metadata.namespace,
                name=pod.metadata.name,
            ),
        )
    return _make

@pytest.fixture
def make_endpoints():
    """엔드포인트 오브젝트 생성 fixture"""
    def _make(namespace, name, addresses=None, resource_version=None):
        subsets = [V1EndpointSubset(addresses=addresses)] if addresses is not None else None
        return V1Endpoints(
            metadata=V1ObjectMeta(namespace=namespace, name=name, resource_version=resource_version),
            subsets=subsets,
        )
    return _make

@pytest.fixture
def node_store():
    store = ResourceStore("nodes")
    store.mark_synced()
    return store

@pytest.fixture
def endpoints_store():
    store = ResourceStore("endpoints")
    store.mark_synced()
    return store

@pytest.fixture
def pod_store():
    store = ResourceStore("pods")
    store.mark_synced()
    return store

class FakeTimer:
    """테스트용 수동 시계"""
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

@pytest.fixture
def timer():
    return FakeTimer()

@pytest.fixture
def cache():
    return MappingCache(maxsize=128)

@pytest.fixture
def queue():
    return RateLimitingQueue(base_delay=0.001, max_delay=0.01)

@pytest.fixture
def controller(node_store, endpoints_store, pod_store, cache, queue):
    """테스트용 컨트롤러 (캐시 접두어 "test", TTL 60초)"""
    return MetadataController(
        node_store,
        endpoints_store,
        pod_store,
        cache,
        queue=queue,
        cache_prefix="test",
        cache_ttl=60,
        max_retries=3,
    )
