from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional


def normalize_raw_score(value: float) -> int:
    """Map a scorer value to an integer percentage.

    The scorer reports either a fraction in [0, 1] or a percentage; values
    at or below 1 are treated as fractions. Halves round up.
    """
    v = float(value)
    scaled = math.floor(v * 100 + 0.5) if v <= 1 else math.floor(v + 0.5)
    return int(min(100, max(0, scaled)))


def _raw_item_score(item: Any) -> Optional[float]:
    if not isinstance(item, Mapping):
        return None
    value = item.get("final_score")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(float(value)):
        return None
    return float(value)


def best_raw_score(items: Iterable[Any]) -> Optional[float]:
    raw = [s for s in (_raw_item_score(item) for item in items) if s is not None]
    if not raw:
        return None
    return max(raw)


def extract_score(payload: Optional[Mapping[str, Any]]) -> Optional[int]:
    if not isinstance(payload, Mapping):
        return None
    items = payload.get("results")
    if not isinstance(items, list):
        return None
    best = best_raw_score(items)
    if best is None:
        return None
    return normalize_raw_score(best)
