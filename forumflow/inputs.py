from __future__ import annotations

import math
import re
from typing import Any, Iterable, List

_ID_SPLIT_RE = re.compile(r"[\s,]+")


def _as_number(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        f = float(raw)
    elif isinstance(raw, str):
        try:
            f = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def coerce_vote_value(raw: Any) -> int:
    """Only an explicit -1 is a downvote; everything else counts as +1."""
    return -1 if _as_number(raw) == -1 else 1


def coerce_weight(raw: Any, default: int = 1) -> int:
    """
    Positive integer contribution weight. Non-numeric, non-finite and non-positive
    inputs fall back to default; fractional values are floored (3.7 -> 3).
    """
    n = _as_number(raw)
    if n is None or n <= 0:
        return default
    w = int(math.floor(n))
    return w if w > 0 else default


def parse_id_list(raw: str | Iterable[Any] | None) -> List[str]:
    """Split on whitespace/commas, drop blanks, dedupe keeping first-seen order."""
    if raw is None:
        return []
    if isinstance(raw, str):
        tokens: Iterable[Any] = _ID_SPLIT_RE.split(raw)
    else:
        tokens = raw
    out: List[str] = []
    for t in tokens:
        s = str(t).strip() if t is not None else ""
        if s and s not in out:
            out.append(s)
    return out


def normalize_id_token(raw: Any) -> str:
    if raw is None:
        return ""
    parts = [p for p in _ID_SPLIT_RE.split(str(raw).strip()) if p]
    return parts[0] if parts else ""


def trim_message(raw: str | None, limit: int = 200) -> str:
    return (raw or "").strip()[:limit]
