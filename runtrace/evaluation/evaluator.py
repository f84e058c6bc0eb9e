"""Evaluator contract: anything that turns a run into an evaluation result."""
from __future__ import annotations

from typing import Any, Optional, Protocol, TypedDict, runtime_checkable

from pydantic import BaseModel

from runtrace.schemas import Example, Run

__all__ = [
    "EvaluationResult",
    "GradingFunctionInput",
    "GradingFunctionResult",
    "RunEvaluator",
]


class EvaluationResult(BaseModel):
    """Outcome of grading one run. Becomes one feedback record."""

    key: str
    score: Optional[float] = None
    value: Optional[Any] = None
    comment: Optional[str] = None
    correction: Optional[Any] = None


class GradingFunctionInput(TypedDict, total=False):
    """Normalised view of a run handed to a grading function.

    ``answer`` is None when the run has no reference example, or the example
    has no outputs, or the outputs lack the answer key.
    """

    input: Any
    prediction: Any
    answer: Optional[Any]


class GradingFunctionResult(TypedDict, total=False):
    key: str
    score: Optional[float]
    value: Optional[Any]
    comment: Optional[str]
    correction: Optional[Any]


@runtime_checkable
class RunEvaluator(Protocol):
    """Structural interface for evaluators; no base class required."""

    async def evaluate_run(self, run: Run, example: Optional[Example] = None) -> EvaluationResult: ...
