"""매핑 캐시 조회 API

파드 단위 서비스 태그 조회와 전체 노드 번들 스냅샷 구성을 제공합니다.
캐시에 번들이 없는 노드는 빈 매핑으로 취급하며 에러가 아닙니다.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from ..cache.store import MappingCache, build_cache_key
from ..config.settings import settings
from ..errors import NodeLookupError
from ..kube.client import ClusterClient
from ..mapper.models import MetadataMapperBundle
from ..utils.logging import get_logger

class MetadataQuery:
    """매핑 캐시에 대한 읽기 전용 접근자"""

    def __init__(self, cache: MappingCache, cache_prefix: Optional[str] = None):
        self.cache = cache
        self.cache_prefix = cache_prefix if cache_prefix is not None else settings.cache_prefix
        self.logger = get_logger(__name__)

    def get_bundle(self, node_name: str) -> Optional[MetadataMapperBundle]:
        """노드 번들 조회. 없으면 None"""
        value, found = self.cache.get(build_cache_key(self.cache_prefix, node_name))
        if not found:
            return None
        if not isinstance(value, MetadataMapperBundle):
            raise TypeError(f"unexpected cache value for node {node_name}: {type(value).__name__}")
        return value

    def list_service_tags_for_pod(self, node_name: str, namespace: str, pod_name: str) -> List[str]:
        """파드를 가리키는 서비스 태그 목록

        Returns:
            ["kube_service:<이름>", ...] (서비스 이름 사전순), 없으면 빈 리스트
        """
        bundle = self.get_bundle(node_name)
        if bundle is None:
            self.logger.debug(f"[캐시 미스] 노드 번들 없음: {node_name}")
            return []

        services, _ = bundle.services_for_pod(namespace, pod_name)
        return [f"{settings.SERVICE_TAG_PREFIX}:{name}" for name in services]

    # 기존 에이전트 호출부 호환용 이름
    get_pod_metadata_names = list_service_tags_for_pod

    async def get_all_node_bundles(
        self, cluster_client: ClusterClient
    ) -> Tuple[Dict[str, MetadataMapperBundle], List[NodeLookupError]]:
        """전체 노드의 번들 스냅샷 구성

        노드 목록 조회 실패(타임아웃 포함)는 에러 목록으로 반환하고,
        개별 노드 조회 실패는 모아서 나머지 결과와 함께 반환합니다.
        """
        bundles: Dict[str, MetadataMapperBundle] = {}
        errors: List[NodeLookupError] = []

        try:
            node_names = await cluster_client.list_node_names()
        except asyncio.TimeoutError:
            self.logger.warning("[노드 조회] 제한 시간 초과")
            errors.append(NodeLookupError(None, "timed out listing nodes"))
            return bundles, errors
        except Exception as e:
            self.logger.error(f"[노드 조회] 실패: {e}")
            errors.append(NodeLookupError(None, str(e)))
            return bundles, errors

        for node_name in node_names:
            try:
                bundle = self.get_bundle(node_name)
            except Exception as e:
                self.logger.error(f"[번들 조회] {node_name} 실패: {e}")
                errors.append(NodeLookupError(node_name, str(e)))
                continue
            bundles[node_name] = bundle if bundle is not None else MetadataMapperBundle()

        return bundles, errors


def bundles_to_payload(bundles: Dict[str, MetadataMapperBundle],
                       errors: List[NodeLookupError]) -> Dict[str, Any]:
    """스냅샷을 JSON 응답 형태로 변환"""
    return {
        'Nodes': {node_name: bundle.to_dict() for node_name, bundle in sorted(bundles.items())},
        'Errors': [str(error) for error in errors],
    }
