"""
Engine - JSON Path Lookup

Minimal path syntax shared by json_extract and the API shape analyzer:
dot-separated keys with bracket indices, e.g. `results[0].hits[3].title`.
"""
import re
from typing import Any, List, Union

_BRACKET = re.compile(r"\[(\-?\d+)\]")


def parse_path(path: str) -> List[Union[str, int]]:
    """Split a path into keys and integer indices."""
    if not path:
        return []
    normalized = _BRACKET.sub(r".\1", path).strip(".")
    parts: List[Union[str, int]] = []
    for part in normalized.split("."):
        if part == "":
            continue
        if re.fullmatch(r"-?\d+", part):
            parts.append(int(part))
        else:
            parts.append(part)
    return parts


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """
    Look up `path` in parsed JSON.

    Integer parts index lists; on dicts they are tried as string keys.
    Missing keys and out-of-range indices return `default`.
    """
    current = data
    for part in parse_path(path):
        if isinstance(current, list) and isinstance(part, int):
            if -len(current) <= part < len(current):
                current = current[part]
                continue
            return default
        if isinstance(current, dict):
            key = str(part)
            if key in current:
                current = current[key]
                continue
            return default
        return default
    return current


def join_path(prefix: str, key: Union[str, int]) -> str:
    """Append a key or index to a path."""
    if isinstance(key, int):
        return f"{prefix}[{key}]"
    return f"{prefix}.{key}" if prefix else key
