import threading

import pytest

from svcmapper.cache.store import MappingCache, build_cache_key

@pytest.fixture
def mapping_cache(timer):
    return MappingCache(maxsize=16, timer=timer)

def test_build_cache_key():
    assert build_cache_key("KubernetesMetadataMapping", "node1") == "KubernetesMetadataMapping:node:node1"

def test_get_missing_key(mapping_cache):
    assert mapping_cache.get("missing") == (None, False)

def test_put_and_get(mapping_cache):
    mapping_cache.put("a", {"x": 1}, ttl=10)
    assert mapping_cache.get("a") == ({"x": 1}, True)

def test_put_replaces_value(mapping_cache):
    mapping_cache.put("a", "old", ttl=10)
    mapping_cache.put("a", "new", ttl=10)
    assert mapping_cache.get("a") == ("new", True)
    assert len(mapping_cache) == 1

def test_entries_expire_by_own_ttl(mapping_cache, timer):
    """항목마다 다른 TTL로 만료"""
    mapping_cache.put("short", 1, ttl=5)
    mapping_cache.put("long", 2, ttl=50)

    timer.now = 10
    assert mapping_cache.get("short") == (None, False)
    assert mapping_cache.get("long") == (2, True)
    assert mapping_cache.keys() == ["long"]

    timer.now = 60
    assert len(mapping_cache) == 0

def test_put_refreshes_ttl(mapping_cache, timer):
    mapping_cache.put("a", 1, ttl=5)
    timer.now = 4
    mapping_cache.put("a", 2, ttl=5)
    timer.now = 8
    assert mapping_cache.get("a") == (2, True)

def test_delete(mapping_cache):
    mapping_cache.put("a", 1, ttl=10)
    mapping_cache.delete("a")
    mapping_cache.delete("not-there")
    assert mapping_cache.get("a") == (None, False)

def test_invalid_ttl(mapping_cache):
    with pytest.raises(ValueError):
        mapping_cache.put("a", 1, ttl=0)

def test_concurrent_access():
    """여러 스레드에서 동시에 접근해도 안전"""
    cache = MappingCache(maxsize=1024)
    errors = []

    def writer(prefix):
        try:
            for i in range(200):
                cache.put(f"{prefix}-{i}", i, ttl=60)
                cache.get(f"{prefix}-{i}")
                if i % 3 == 0:
                    cache.delete(f"{prefix}-{i}")
        except Exception as e:  # 스레드 예외를 메인으로 전달
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(f"t{n}",)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(cache) == 4 * (200 - 67)

def test_default_size_holds_large_cluster():
    """기본 크기로 5000 노드 번들을 모두 유지 (LRU 축출 없음)"""
    cache = MappingCache()
    for i in range(5000):
        cache.put(build_cache_key("test", f"node{i}"), i, ttl=60)

    assert len(cache) == 5000
    assert cache.get(build_cache_key("test", "node0")) == (0, True)
