"""조회 API HTTP 서버

다른 에이전트 프로세스가 사용하는 읽기 전용 JSON 엔드포인트를 제공합니다.

- GET /api/v1/tags/{node}/{namespace}/{pod}: 파드의 서비스 태그
- GET /api/v1/metadata/nodes: 전체 노드 번들 스냅샷 (부분 실패 포함)
- GET /healthz: 뷰 동기화 여부
"""

from typing import Callable
import logging

from aiohttp import web

from ..kube.client import ClusterClient
from ..query.metadata import MetadataQuery, bundles_to_payload

QUERY_KEY = web.AppKey("query", MetadataQuery)
CLUSTER_CLIENT_KEY = web.AppKey("cluster_client", ClusterClient)
READY_KEY = web.AppKey("ready", Callable[[], bool])

logger = logging.getLogger(__name__)

async def handle_pod_tags(request: web.Request) -> web.Response:
    node = request.match_info['node']
    namespace = request.match_info['namespace']
    pod = request.match_info['pod']

    tags = request.app[QUERY_KEY].list_service_tags_for_pod(node, namespace, pod)
    return web.json_response({
        'node': node,
        'namespace': namespace,
        'pod': pod,
        'tags': tags,
    })

async def handle_all_nodes(request: web.Request) -> web.Response:
    bundles, errors = await request.app[QUERY_KEY].get_all_node_bundles(request.app[CLUSTER_CLIENT_KEY])
    if errors:
        logger.warning(f"[스냅샷] 부분 실패 {len(errors)}건")
    return web.json_response(bundles_to_payload(bundles, errors))

async def handle_health(request: web.Request) -> web.Response:
    if not request.app[READY_KEY]():
        return web.json_response({'status': 'syncing'}, status=503)
    return web.json_response({'status': 'ok'})

def create_app(query: MetadataQuery, cluster_client: ClusterClient,
               ready: Callable[[], bool]) -> web.Application:
    """조회 API 애플리케이션 생성"""
    app = web.Application()
    app[QUERY_KEY] = query
    app[CLUSTER_CLIENT_KEY] = cluster_client
    app[READY_KEY] = ready

    app.router.add_get('/api/v1/tags/{node}/{namespace}/{pod}', handle_pod_tags)
    app.router.add_get('/api/v1/metadata/nodes', handle_all_nodes)
    app.router.add_get('/healthz', handle_health)
    return app
