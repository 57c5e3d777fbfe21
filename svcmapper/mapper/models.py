from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple
import threading

# 파드 이름 -> 서비스 이름 집합
PodServiceMap = Dict[str, Set[str]]


class ServicesMapper(dict):
    """네임스페이스 -> PodServiceMap

    파드가 하나도 없는 네임스페이스는 prune()으로 제거됩니다.
    """

    def set(self, namespace: str, pod_name: str, service_name: str) -> None:
        """파드에 서비스 추가"""
        self.setdefault(namespace, {}).setdefault(pod_name, set()).add(service_name)

    def services_for_pod(self, namespace: str, pod_name: str) -> Optional[Set[str]]:
        pods = self.get(namespace)
        if pods is None:
            return None
        return pods.get(pod_name)

    def prune(self) -> 'ServicesMapper':
        """서비스가 없는 파드와 파드가 없는 네임스페이스 제거"""
        for namespace in list(self.keys()):
            pods = self[namespace]
            for pod_name in [name for name, services in pods.items() if not services]:
                del pods[pod_name]
            if not pods:
                del self[namespace]
        return self

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        """JSON 직렬화용 (서비스 이름은 정렬)"""
        return {
            namespace: {pod_name: sorted(services) for pod_name, services in pods.items()}
            for namespace, pods in self.items()
        }


@dataclass
class MetadataMapperBundle:
    """노드 단위 서비스 매핑 번들

    게시 이후에는 수정하지 않고 재조정 시 통째로 교체됩니다.
    """
    services: ServicesMapper = field(default_factory=ServicesMapper)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def services_for_pod(self, namespace: str, pod_name: str) -> Tuple[List[str], bool]:
        """파드의 서비스 이름 목록 (정렬)과 존재 여부"""
        with self._lock:
            services = self.services.services_for_pod(namespace, pod_name)
            if not services:
                return [], False
            return sorted(services), True

    def to_dict(self) -> Dict[str, Dict]:
        with self._lock:
            return {'services': self.services.to_dict()}
