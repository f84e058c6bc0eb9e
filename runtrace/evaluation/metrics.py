from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from statistics import mean
from typing import Any, Dict, Iterable, List, Optional, Tuple

from runtrace.schemas import Feedback


@dataclass
class FeedbackStats:
    count: int
    avg_score: Optional[float]
    scored: int
    values: Dict[str, int] = field(default_factory=dict)


def _safe_mean(nums: Iterable[Any]) -> Optional[float]:
    vals = [n for n in nums if isinstance(n, (int, float)) and not isinstance(n, bool)]
    return mean(vals) if vals else None


def aggregate(feedback: Iterable[Feedback]) -> FeedbackStats:
    """Summarise one metric's feedback: count, mean score, value histogram."""
    rows = list(feedback)
    if not rows:
        return FeedbackStats(count=0, avg_score=None, scored=0)
    scores = [f.score for f in rows if f.score is not None]
    values = Counter(str(f.value) for f in rows if f.value is not None)
    return FeedbackStats(count=len(rows), avg_score=_safe_mean(scores), scored=len(scores), values=dict(values))


def group_by(feedback: Iterable[Feedback], *keys: str) -> Dict[Tuple, List[Feedback]]:
    groups: Dict[Tuple, List[Feedback]] = {}
    for f in feedback:
        k = tuple(getattr(f, key, None) for key in keys)
        groups.setdefault(k, []).append(f)
    return groups


def aggregate_feedback(feedback: Iterable[Feedback]) -> Dict[str, FeedbackStats]:
    """Per feedback key statistics."""
    return {key: aggregate(rows) for (key,), rows in group_by(feedback, "key").items()}


__all__ = ["FeedbackStats", "aggregate", "aggregate_feedback", "group_by"]
