from kubernetes_asyncio import client, config
from typing import List, Optional
import asyncio
import logging

from ..config.settings import settings

async def load_kube_config() -> None:
    """클러스터 내부 설정을 우선 사용하고, 없으면 kubeconfig 사용"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        await config.load_kube_config()


class ClusterClient:
    """노드 목록을 원격으로 조회하는 클러스터 접근자

    모든 호출에 제한 시간을 적용합니다.
    """
    def __init__(self, api: client.CoreV1Api, timeout_seconds: Optional[float] = None):
        self.api = api
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.cluster_api_timeout
        self.logger = logging.getLogger(__name__)

    async def list_node_names(self) -> List[str]:
        """전체 노드 이름 조회

        Raises:
            asyncio.TimeoutError: 제한 시간 초과
            client.exceptions.ApiException: API 오류
        """
        nodes = await asyncio.wait_for(
            self.api.list_node(timeout_seconds=int(self.timeout_seconds) or 1),
            self.timeout_seconds,
        )
        names = [node.metadata.name for node in nodes.items or []]
        self.logger.debug(f"[노드 조회] {len(names)}개 노드")
        return names
