"""프로메테우스 메트릭

재조정 결과, 작업 큐 상태, 캐시 크기 메트릭을 정의하고
메트릭 페이지를 노출하는 서버를 구현합니다.
"""

import threading
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from svcmapper.utils.logging import get_logger
from svcmapper.config.settings import settings

RECONCILE_TOTAL = Counter(
    "svcmapper_reconcile_total",
    "엔드포인트 재조정 횟수",
    ["result"],
)
RECONCILE_DURATION = Histogram(
    "svcmapper_reconcile_duration_seconds",
    "엔드포인트 재조정 소요 시간",
)
WORKQUEUE_DEPTH = Gauge(
    "svcmapper_workqueue_depth",
    "작업 큐 대기 항목 수",
)
WORKQUEUE_RETRIES = Counter(
    "svcmapper_workqueue_retries_total",
    "작업 큐 재시도 횟수",
)
CACHED_BUNDLES = Gauge(
    "svcmapper_cached_bundles",
    "캐시에 게시된 노드 번들 수",
)

class PrometheusMetrics:
    """프로메테우스 메트릭 서버 클래스"""

    def __init__(self, port: int = None):
        self.logger = get_logger(__name__)
        self.port = port if port is not None else settings.prometheus_port

    def _run_metrics_server(self):
        """메트릭 서버 실행"""
        try:
            self.logger.info(f"[프로메테우스] 메트릭 서버 시작 (포트: {self.port})")
            start_http_server(self.port)
        except Exception as e:
            self.logger.error(f"[프로메테우스] 메트릭 서버 시작 실패: {e}")
            raise

    def start_metrics_server(self):
        """메트릭 서버를 데몬 쓰레드로 시작"""
        metrics_thread = threading.Thread(
            target=self._run_metrics_server,
            daemon=True,
            name="prometheus-metrics-server"
        )
        metrics_thread.start()
