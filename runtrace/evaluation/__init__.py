"""
Evaluation for recorded runs.

Provides:
- The evaluator contract (any object with ``evaluate_run``)
- A string evaluator driven by plain grading functions, and stock graders
- The orchestrator that grades runs and stores feedback
- Aggregation helpers for the resulting feedback
"""

from .evaluator import EvaluationResult, GradingFunctionInput, GradingFunctionResult, RunEvaluator
from .graders import exact_match_grader, jaccard_chars, jaccard_grader
from .metrics import FeedbackStats, aggregate_feedback
from .orchestrator import EvaluationOutcome, evaluate_run, evaluate_runs
from .string_evaluator import StringEvaluator

__all__ = [
    "EvaluationResult",
    "GradingFunctionInput",
    "GradingFunctionResult",
    "RunEvaluator",
    "StringEvaluator",
    "jaccard_chars",
    "jaccard_grader",
    "exact_match_grader",
    "EvaluationOutcome",
    "evaluate_run",
    "evaluate_runs",
    "FeedbackStats",
    "aggregate_feedback",
]
