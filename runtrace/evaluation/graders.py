"""Stock grading functions for :class:`StringEvaluator`.

Each grader treats a missing answer (``None``) as ungradeable and returns the
``AMBIGUOUS`` value with a score of -0.5 instead of raising. An empty-string
answer is still graded.
"""
from __future__ import annotations

from typing import Any, Callable

from runtrace.evaluation.evaluator import GradingFunctionInput, GradingFunctionResult

AMBIGUOUS = "AMBIGUOUS"
CORRECT = "CORRECT"
INCORRECT = "INCORRECT"
AMBIGUOUS_SCORE = -0.5


def _ambiguous() -> GradingFunctionResult:
    return {"score": AMBIGUOUS_SCORE, "value": AMBIGUOUS}


def jaccard_chars(output: Any, answer: Any) -> float:
    """Jaccard similarity of the character sets of two strings.

    Both sides are stripped and lowercased first. Two empty strings score 1.0.
    """
    prediction_chars = set(str(output).strip().lower())
    answer_chars = set(str(answer).strip().lower())
    union = prediction_chars | answer_chars
    if not union:
        return 1.0
    return len(prediction_chars & answer_chars) / len(union)


def jaccard_grader(threshold: float = 0.9) -> Callable[[GradingFunctionInput], GradingFunctionResult]:
    """Score by character-set Jaccard; ``CORRECT`` only above ``threshold``."""

    def grade(config: GradingFunctionInput) -> GradingFunctionResult:
        answer = config.get("answer")
        if answer is None:
            return _ambiguous()
        score = jaccard_chars(config.get("prediction", ""), answer)
        return {"score": score, "value": CORRECT if score > threshold else INCORRECT}

    return grade


def exact_match_grader(*, case_sensitive: bool = False) -> Callable[[GradingFunctionInput], GradingFunctionResult]:
    """1.0 / ``CORRECT`` when prediction and answer match after stripping."""

    def grade(config: GradingFunctionInput) -> GradingFunctionResult:
        answer = config.get("answer")
        if answer is None:
            return _ambiguous()
        prediction = str(config.get("prediction", "")).strip()
        expected = str(answer).strip()
        if not case_sensitive:
            prediction, expected = prediction.lower(), expected.lower()
        matched = prediction == expected
        return {"score": 1.0 if matched else 0.0, "value": CORRECT if matched else INCORRECT}

    return grade


__all__ = [
    "jaccard_chars",
    "jaccard_grader",
    "exact_match_grader",
    "AMBIGUOUS",
    "CORRECT",
    "INCORRECT",
    "AMBIGUOUS_SCORE",
]
