"""
Nested query-string decoding for the query mapping and form bodies.

    ?sort=price                      → {"sort": "price"}
    ?sort=a&sort=b                   → {"sort": ["a", "b"]}
    ?price[gte]=500                  → {"price": {"gte": "500"}}
    ?email[$gt]=                     → {"email": {"$gt": ""}}
    ?tags[]=x&tags[]=y               → {"tags": ["x", "y"]}

Bracket nesting deeper than `depth` is kept literally in the last key.
Numeric indices are treated as plain mapping keys.
"""

import re
from typing import Any, Dict, Iterable, List, Tuple
from urllib.parse import parse_qsl

_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_SEGMENT_RE = re.compile(r"\[([^\[\]]*)\]")

DEFAULT_DEPTH = 5


def split_key(key: str, depth: int = DEFAULT_DEPTH) -> List[str]:
    match = _KEY_RE.match(key)
    if not match:
        return [key]
    head, brackets = match.groups()
    segments = [head] + _SEGMENT_RE.findall(brackets)
    if len(segments) > depth + 1:
        overflow = "".join(f"[{s}]" for s in segments[depth + 1:])
        segments = segments[: depth + 1]
        segments[-1] = f"{segments[-1]}{overflow}" if segments[-1] else overflow
    return segments


def _merge(container: Dict[str, Any], key: str, value: Any) -> None:
    if key not in container:
        container[key] = value
        return
    existing = container[key]
    if isinstance(existing, list):
        existing.append(value)
    else:
        container[key] = [existing, value]


def _assign(container: Dict[str, Any], path: List[str], value: str) -> None:
    key = path[0]
    rest = path[1:]

    if not rest:
        _merge(container, key, value)
        return

    if rest == [""]:
        existing = container.get(key)
        if existing is None:
            container[key] = [value]
        elif isinstance(existing, list):
            existing.append(value)
        else:
            container[key] = [existing, value]
        return

    child = container.get(key)
    if isinstance(child, list):
        child = {str(i): v for i, v in enumerate(child)}
        container[key] = child
    elif not isinstance(child, dict):
        child = {} if child is None else {"": child}
        container[key] = child
    _assign(child, [s if s else str(len(child)) for s in rest[:1]] + rest[1:], value)


def parse_pairs(pairs: Iterable[Tuple[str, str]], depth: int = DEFAULT_DEPTH) -> Dict[str, Any]:
    """Fold decoded (key, value) pairs into a nested mapping."""
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if not key:
            continue
        _assign(result, split_key(key, depth), value)
    return result


def parse_query_string(query: str, depth: int = DEFAULT_DEPTH) -> Dict[str, Any]:
    return parse_pairs(parse_qsl(query, keep_blank_values=True), depth)
