from __future__ import annotations

import math
from typing import Any, Dict, Optional


def deep_get(obj: Any, path: str, default: Any = None) -> Any:
    """Dotted-path lookup through nested dicts; returns default on any miss."""
    cur = obj
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return default if cur is None else cur


def deep_set(obj: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = obj
    for part in parts[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[parts[-1]] = value


def merge_deep(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in source.items():
        if isinstance(v, dict) and isinstance(target.get(k), dict):
            merge_deep(target[k], v)
        else:
            target[k] = v
    return target


def is_number(v: Any) -> bool:
    # bools are ints in Python but never valid prices
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    return not math.isnan(v)


def to_float(v: Any) -> Optional[float]:
    if is_number(v):
        return float(v)
    if isinstance(v, str):
        try:
            f = float(v.strip())
        except ValueError:
            return None
        return None if math.isnan(f) else f
    return None
