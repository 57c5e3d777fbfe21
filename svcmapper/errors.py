from typing import Optional


class MapperError(Exception):
    """svcmapper 기본 예외"""


class ViewNotSyncedError(MapperError):
    """초기 동기화가 끝나지 않은 뷰를 조회한 경우

    일시적인 조회 실패로 취급되어 작업 큐의 재시도 경로를 탑니다.
    """

    def __init__(self, resource: str):
        super().__init__(f"{resource} 뷰가 아직 동기화되지 않음")
        self.resource = resource


class StartupError(MapperError):
    """뷰가 제한 시간 내에 동기화되지 않아 시작할 수 없는 경우"""


class NodeLookupError(MapperError):
    """전체 노드 스냅샷 구성 중 단일 노드(또는 노드 목록 조회)의 실패

    node_name이 None이면 노드 목록 자체를 가져오지 못한 경우입니다.
    """

    def __init__(self, node_name: Optional[str], message: str):
        super().__init__(message)
        self.node_name = node_name

    def __str__(self) -> str:
        if self.node_name is None:
            return f"노드 목록 조회 실패: {self.args[0]}"
        return f"노드 {self.node_name}: {self.args[0]}"
