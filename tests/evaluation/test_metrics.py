import uuid

import pytest

from runtrace.evaluation.metrics import aggregate, aggregate_feedback, group_by
from runtrace.schemas import Feedback


def _fb(key, score=None, value=None):
    return Feedback(id=uuid.uuid4(), run_id=uuid.uuid4(), key=key, score=score, value=value)


def test_aggregate_empty():
    stats = aggregate([])
    assert (stats.count, stats.avg_score, stats.scored, stats.values) == (0, None, 0, {})


def test_aggregate_feedback_per_key():
    rows = [
        _fb("Jaccard", 0.6, "INCORRECT"),
        _fb("Jaccard", 1.0, "CORRECT"),
        _fb("Jaccard", None, "AMBIGUOUS"),
        _fb("thumbs", value="up"),
    ]
    stats = aggregate_feedback(rows)

    assert set(stats) == {"Jaccard", "thumbs"}
    assert stats["Jaccard"].count == 3
    assert stats["Jaccard"].scored == 2
    assert stats["Jaccard"].avg_score == pytest.approx(0.8)
    assert stats["Jaccard"].values == {"INCORRECT": 1, "CORRECT": 1, "AMBIGUOUS": 1}
    assert stats["thumbs"].avg_score is None


def test_group_by_multiple_keys():
    rows = [_fb("a", 1.0), _fb("a", 1.0), _fb("a", 0.0)]
    groups = group_by(rows, "key", "score")
    assert {k: len(v) for k, v in groups.items()} == {("a", 1.0): 2, ("a", 0.0): 1}
