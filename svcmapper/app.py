"""서비스 매핑 메인 프로그램

Node/Pod/Endpoints 뷰를 동기화하고, 재조정 워커와 조회 API 서버를 실행합니다.
"""

import asyncio
import logging
import signal
import sys

from aiohttp import web
from kubernetes_asyncio import client

from svcmapper.api.server import create_app
from svcmapper.cache.store import MappingCache
from svcmapper.config.settings import settings
from svcmapper.controller.metadata import MetadataController
from svcmapper.errors import StartupError
from svcmapper.kube.client import ClusterClient, load_kube_config
from svcmapper.kube.informer import ResourceInformer
from svcmapper.kube.store import ResourceStore
from svcmapper.metrics.prometheus import PrometheusMetrics
from svcmapper.query.metadata import MetadataQuery
from svcmapper.utils.logging import get_logger, setup_logging

class Application:
    def __init__(self):
        # 로깅 초기화
        setup_logging(level=getattr(logging, settings.log_level))
        self.logger = get_logger(__name__)

        self.metrics = PrometheusMetrics()
        self.cache = MappingCache(maxsize=settings.cache_maxsize)
        self.query = MetadataQuery(self.cache)
        self.stop_event = asyncio.Event()
        self.api_client = None
        self.informers = []
        self.informer_tasks = []
        self.runner = None

    def request_stop(self):
        """종료 신호 처리"""
        self.logger.info("[종료] 종료 신호 수신")
        self.stop_event.set()

    async def start(self):
        """애플리케이션 시작"""
        try:
            self.logger.info("[시작] 서비스 매핑 시작")

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.request_stop)

            self.logger.debug("[초기화] 프로메테우스 메트릭 서버 시작")
            self.metrics.start_metrics_server()

            # 쿠버네티스 클라이언트 및 뷰 구성
            await load_kube_config()
            self.api_client = client.ApiClient()
            core_api = client.CoreV1Api(self.api_client)

            node_store = ResourceStore("nodes")
            endpoints_store = ResourceStore("endpoints")
            pod_store = ResourceStore("pods")
            node_informer = ResourceInformer("nodes", core_api.list_node, node_store)
            endpoints_informer = ResourceInformer(
                "endpoints", core_api.list_endpoints_for_all_namespaces, endpoints_store
            )
            pod_informer = ResourceInformer("pods", core_api.list_pod_for_all_namespaces, pod_store)
            self.informers = [node_informer, endpoints_informer, pod_informer]

            controller = MetadataController(node_store, endpoints_store, pod_store, self.cache)
            controller.register(node_informer, endpoints_informer, pod_informer)
            self.informer_tasks = [asyncio.create_task(informer.start()) for informer in self.informers]

            # 조회 API 서버
            self.logger.debug("[초기화] 조회 API 서버 시작")
            app = create_app(self.query, ClusterClient(core_api), controller.has_synced)
            self.runner = web.AppRunner(app)
            await self.runner.setup()
            await web.TCPSite(self.runner, settings.api_host, settings.api_port).start()
            self.logger.info(f"[초기화] 조회 API 서버 시작 완료 ({settings.api_host}:{settings.api_port})")

            self.logger.info("[실행] 재조정 시작")
            await controller.run(settings.workers, self.stop_event)

        except StartupError as e:
            self.logger.error(f"[시작 실패] {e}")
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        """애플리케이션 종료"""
        for informer in self.informers:
            await informer.stop()
        for task in self.informer_tasks:
            task.cancel()
        await asyncio.gather(*self.informer_tasks, return_exceptions=True)
        if self.runner:
            await self.runner.cleanup()
        if self.api_client:
            await self.api_client.close()
        self.logger.info("[종료] 프로그램 종료")

def main():
    app = Application()
    try:
        asyncio.run(app.start())
    except StartupError:
        sys.exit(1)

if __name__ == "__main__":
    main()
