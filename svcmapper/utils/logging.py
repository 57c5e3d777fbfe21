import logging
import sys
import contextvars
from contextlib import contextmanager
from typing import Iterator, Optional

# 재조정 중인 엔드포인트 키와 번들을 게시하는 노드
current_key: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('key', default=None)
current_node: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('node', default=None)

# 요청/워치 단위로 INFO 로그를 남기는 라이브러리 로거
NOISY_LOGGERS = ("kubernetes_asyncio", "aiohttp.access")

PLACEHOLDER = "---"

class ReconcileContextFilter(logging.Filter):
    """로그 레코드에 key/node 필드를 채우는 필터"""

    def filter(self, record):
        record.key = current_key.get() or PLACEHOLDER
        record.node = current_node.get() or PLACEHOLDER
        return True

def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not any(isinstance(f, ReconcileContextFilter) for f in logger.filters):
        logger.addFilter(ReconcileContextFilter())
    return logger

@contextmanager
def reconcile_context(key: Optional[str] = None, node: Optional[str] = None) -> Iterator[None]:
    """블록 안의 로그에 엔드포인트 키/노드를 붙임

    지정한 값만 바꾸고, 블록을 벗어나면 이전 값으로 되돌립니다.

    Example:
        with reconcile_context(key="default/nginx"):
            with reconcile_context(node="node1"):
                logger.info("게시")  # key=default/nginx, node=node1
    """
    tokens = []
    if key is not None:
        tokens.append((current_key, current_key.set(key)))
    if node is not None:
        tokens.append((current_node, current_node.set(node)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)

def setup_logging(level: int = logging.INFO):
    """기본 로깅 설정

    Args:
        level: 로깅 레벨 (기본값: logging.INFO)
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ReconcileContextFilter())
    handler.setFormatter(
        logging.Formatter('%(asctime)s %(levelname)-7s [%(key)s @ %(node)s] %(name)s: %(message)s')
    )
    root.addHandler(handler)

    # DEBUG가 아니면 클라이언트 라이브러리 로그는 경고 이상만
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    get_logger(__name__).debug(f"[설정] 로깅 설정 완료 (레벨: {logging.getLevelName(level)})")
