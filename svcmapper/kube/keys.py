from typing import Any, Tuple


def meta_namespace_key(obj: Any) -> str:
    """오브젝트의 "namespace/name" 키 생성 (클러스터 범위 오브젝트는 "name")"""
    metadata = obj.metadata
    if metadata.namespace:
        return f"{metadata.namespace}/{metadata.name}"
    return metadata.name


def split_meta_namespace_key(key: str) -> Tuple[str, str]:
    """키를 (namespace, name)으로 분리

    Raises:
        ValueError: 키 형식이 잘못된 경우
    """
    parts = key.split('/')
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")
