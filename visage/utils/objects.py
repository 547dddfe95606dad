"""Helpers for nested document dictionaries.

Documents are plain nested dicts. Updates may use dotted keys
("texture.src") which expand into nested structure before merging.
"""

from collections.abc import Mapping
from copy import deepcopy
from typing import Any, Dict, Iterable


_MISSING = object()


def get_property(data: Mapping, path: str, default: Any = None) -> Any:
    """Read a dotted path from nested mappings

    Args:
        data: Root mapping
        path: Dotted key path, e.g. "texture.scaleX"
        default: Returned when any segment is missing

    Returns:
        The value at path, or default
    """
    current: Any = data
    for segment in path.split('.'):
        if not isinstance(current, Mapping) or segment not in current:
            return default
        current = current[segment]
    return current


def has_property(data: Mapping, path: str) -> bool:
    return get_property(data, path, _MISSING) is not _MISSING


def set_property(data: Dict, path: str, value: Any):
    """Write a dotted path, creating intermediate dicts as needed"""
    segments = path.split('.')
    current = data
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


def delete_property(data: Dict, path: str) -> bool:
    """Remove a dotted path

    Returns:
        True if something was removed
    """
    segments = path.split('.')
    current = data
    for segment in segments[:-1]:
        current = current.get(segment) if isinstance(current, dict) else None
        if current is None:
            return False
    if isinstance(current, dict) and segments[-1] in current:
        del current[segments[-1]]
        return True
    return False


def flatten(data: Mapping, prefix: str = "") -> Dict[str, Any]:
    """Flatten nested mappings into dotted keys

    Empty mappings are kept as leaves so that "set to {}" survives.
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flat.update(flatten(value, dotted))
        else:
            flat[dotted] = value
    return flat


def expand(data: Mapping) -> Dict[str, Any]:
    """Expand dotted keys into nested dicts (inverse of flatten)"""
    expanded: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            value = expand(value)
        if '.' in key:
            head, rest = key.split('.', 1)
            existing = expanded.get(head)
            nested = expand({rest: value})
            if isinstance(existing, dict):
                merge_object(existing, nested, inplace=True)
            else:
                expanded[head] = nested
        else:
            existing = expanded.get(key)
            if isinstance(existing, dict) and isinstance(value, dict):
                merge_object(existing, value, inplace=True)
            else:
                expanded[key] = value
    return expanded


def merge_object(original: Dict, other: Mapping, inplace: bool = False) -> Dict:
    """Deep-merge other into original

    Mappings merge key by key, every other value (lists included)
    replaces the existing value wholesale.

    Args:
        original: Target mapping
        other: Incoming values (dotted keys allowed)
        inplace: Mutate original instead of a deep copy

    Returns:
        The merged dict
    """
    target = original if inplace else deepcopy(original)
    for key, value in expand(other).items():
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            merge_object(existing, value, inplace=True)
        else:
            target[key] = deepcopy(value)
    return target


def matches_any(keys: Iterable[str], roots: Iterable[str]) -> bool:
    """True if any dotted key equals a root or lies beneath one"""
    roots = tuple(roots)
    return any(
        key == root or key.startswith(root + '.')
        for key in keys
        for root in roots
    )
