import os


class Settings:
    """애플리케이션 설정

    모든 환경 변수와 상수 기반 설정을 중앙 집중적으로 관리합니다.
    """

    # 서비스 태그 접두어
    # query/metadata.py에서 태그 문자열 생성 시 사용
    SERVICE_TAG_PREFIX: str = "kube_service"

    # 엔드포인트 주소의 targetRef 중 파드로 취급할 종류
    POD_KIND: str = "Pod"

    def __init__(self):
        # 로깅 설정
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        # 프로메테우스 설정
        self.prometheus_port = int(os.getenv("PROMETHEUS_PORT", "9090"))

        # HTTP API 설정
        self.api_host = os.getenv("API_HOST", "0.0.0.0")
        self.api_port = int(os.getenv("API_PORT", "5005"))

        # 매핑 캐시 설정 (최대 크기는 클러스터 노드 수보다 커야 함)
        self.cache_prefix = os.getenv("MAPPER_CACHE_PREFIX", "KubernetesMetadataMapping")
        self.cache_ttl = float(os.getenv("MAPPER_CACHE_TTL", "120"))
        self.cache_maxsize = int(os.getenv("MAPPER_CACHE_MAXSIZE", "16384"))

        # 재조정(reconcile) 설정
        self.workers = int(os.getenv("MAPPER_WORKERS", "2"))
        self.max_retries = int(os.getenv("MAPPER_MAX_RETRIES", "5"))
        # 변경이 없어도 번들을 다시 게시하는 주기 (초). TTL보다 짧아야 함
        self.resync_period = float(os.getenv("MAPPER_RESYNC_PERIOD", "30"))

        # 작업 큐 재시도 백오프 (초)
        self.queue_base_delay = float(os.getenv("QUEUE_BASE_DELAY", "0.005"))
        self.queue_max_delay = float(os.getenv("QUEUE_MAX_DELAY", "60"))

        # 쿠버네티스 설정
        self.informer_sync_timeout = float(os.getenv("INFORMER_SYNC_TIMEOUT", "30"))
        self.watch_timeout = int(os.getenv("WATCH_TIMEOUT", "300"))
        self.cluster_api_timeout = float(os.getenv("CLUSTER_API_TIMEOUT", "5"))


# 싱글톤 인스턴스 생성
settings = Settings()
