import asyncio
from unittest.mock import Mock

import pytest

from svcmapper.cache.store import build_cache_key
from svcmapper.controller.metadata import MetadataController
from svcmapper.errors import StartupError
from svcmapper.kube.store import ResourceStore
from svcmapper.mapper.models import MetadataMapperBundle
from svcmapper.query.metadata import MetadataQuery

@pytest.fixture
def processed():
    return asyncio.Queue()

@pytest.fixture
def running_controller(node_store, endpoints_store, pod_store, cache, queue, processed):
    """워커가 실행 중인 컨트롤러 (stop_event로 종료)"""
    controller = MetadataController(node_store, endpoints_store, pod_store, cache,
                                    queue=queue, cache_prefix="test", cache_ttl=60,
                                    processed=processed)
    return controller

async def wait_processed(processed, key):
    """재조정 완료 대기"""
    done = await asyncio.wait_for(processed.get(), timeout=2)
    assert done == key

async def test_endpoints_events_end_to_end(running_controller, endpoints_store, node_store, cache,
                                           processed, make_node, make_pod, make_endpoints, make_address):
    """엔드포인트 이벤트 -> 큐 -> 재조정 -> 조회까지 동작 확인"""
    # Given
    controller = running_controller
    stop_event = asyncio.Event()
    run_task = asyncio.create_task(controller.run(workers=2, stop_event=stop_event, sync_timeout=1))
    query = MetadataQuery(cache, cache_prefix="test")

    node = make_node("ip-172-31-119-125")
    node_store.upsert(node)
    controller.add_node(node)
    pod = make_pod("default", "nginx", node_name=node.metadata.name)
    address = make_address(pod, node.metadata.name, ip="172.17.0.1")

    # When: nginx-1 생성
    ep1 = make_endpoints("default", "nginx-1", [address])
    endpoints_store.upsert(ep1)
    controller.add_endpoints(ep1)
    await wait_processed(processed, "default/nginx-1")

    # Then
    assert query.list_service_tags_for_pod(node.metadata.name, "default", "nginx") == [
        "kube_service:nginx-1"
    ]

    # When: 같은 파드에 nginx-2 추가
    ep2 = make_endpoints("default", "nginx-2", [address])
    endpoints_store.upsert(ep2)
    controller.add_endpoints(ep2)
    await wait_processed(processed, "default/nginx-2")

    # Then
    assert query.list_service_tags_for_pod(node.metadata.name, "default", "nginx") == [
        "kube_service:nginx-1",
        "kube_service:nginx-2",
    ]

    # When: nginx-1 삭제
    endpoints_store.remove(ep1)
    controller.delete_endpoints(ep1)
    await wait_processed(processed, "default/nginx-1")

    # Then
    assert query.list_service_tags_for_pod(node.metadata.name, "default", "nginx") == [
        "kube_service:nginx-2"
    ]

    stop_event.set()
    await asyncio.wait_for(run_task, timeout=2)

async def test_run_fails_when_views_never_sync(node_store, endpoints_store, cache, queue):
    """뷰가 동기화되지 않으면 StartupError"""
    pod_store = ResourceStore("pods")  # 동기화되지 않은 뷰
    controller = MetadataController(node_store, endpoints_store, pod_store, cache, queue=queue)

    with pytest.raises(StartupError):
        await controller.run(workers=1, stop_event=asyncio.Event(), sync_timeout=0.2)

async def test_shutdown_drains_pending_keys(running_controller, endpoints_store, cache, processed,
                                            make_pod, make_endpoints, make_address):
    """종료 신호 전에 들어온 키는 모두 처리한 뒤 종료"""
    # Given
    controller = running_controller
    pod = make_pod("default", "web-0")
    for i in range(5):
        endpoints_store.upsert(make_endpoints("default", f"svc{i}", [make_address(pod, "node1")]))
        controller.queue.add(f"default/svc{i}")

    stop_event = asyncio.Event()
    stop_event.set()

    # When
    await asyncio.wait_for(controller.run(workers=2, stop_event=stop_event, sync_timeout=1), timeout=2)

    # Then
    assert processed.qsize() == 5
    bundle, found = cache.get(build_cache_key("test", "node1"))
    assert found
    assert bundle.services_for_pod("default", "web-0") == ([f"svc{i}" for i in range(5)], True)

def test_update_with_same_resource_version_is_ignored(controller, make_endpoints):
    """재동기화로 같은 버전이 다시 오면 큐에 넣지 않음"""
    old = make_endpoints("default", "svc1", resource_version="10")
    same = make_endpoints("default", "svc1", resource_version="10")
    newer = make_endpoints("default", "svc1", resource_version="11")

    controller.update_endpoints(old, same)
    assert len(controller.queue) == 0

    controller.update_endpoints(old, newer)
    assert len(controller.queue) == 1

def test_add_node_seeds_empty_bundle(controller, cache, make_node):
    """새 노드에는 빈 번들이 생기고, 기존 번들은 유지"""
    controller.add_node(make_node("node1"))
    bundle, found = cache.get(build_cache_key("test", "node1"))
    assert found
    assert bundle.services == {}

    existing = MetadataMapperBundle()
    existing.services.set("default", "pod1", "svc1")
    cache.put(build_cache_key("test", "node2"), existing, 60)
    controller.add_node(make_node("node2"))
    assert cache.get(build_cache_key("test", "node2"))[0] is existing

def test_delete_node_evicts_bundle(controller, endpoints_store, cache, make_node, make_pod,
                                   make_endpoints, make_address):
    """삭제된 노드의 번들은 제거되고 이후 재조정 대상에서도 빠짐"""
    pod = make_pod("default", "pod1")
    endpoints_store.upsert(make_endpoints("default", "svc1", [make_address(pod, "node1")]))
    controller.sync_endpoints("default/svc1")

    controller.delete_node(make_node("node1"))
    assert cache.get(build_cache_key("test", "node1")) == (None, False)

    endpoints_store.remove(make_endpoints("default", "svc1"))
    controller.sync_endpoints("default/svc1")
    assert cache.get(build_cache_key("test", "node1")) == (None, False)

def test_register_wires_informer_handlers(controller):
    """informer에 이벤트 핸들러가 등록되는지 확인"""
    node_informer = Mock()
    endpoints_informer = Mock()
    pod_informer = Mock()

    controller.register(node_informer, endpoints_informer, pod_informer)

    node_informer.add_event_handler.assert_called_once_with(
        on_add=controller.add_node, on_delete=controller.delete_node
    )
    endpoints_informer.add_event_handler.assert_called_once_with(
        on_add=controller.add_endpoints,
        on_update=controller.update_endpoints,
        on_delete=controller.delete_endpoints,
    )
    pod_informer.add_event_handler.assert_called_once_with(
        on_add=controller.add_pod,
        on_update=controller.update_pod,
        on_delete=controller.delete_pod,
    )
