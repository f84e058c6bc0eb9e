from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from runtrace.evaluation.evaluator import EvaluationResult, GradingFunctionInput, GradingFunctionResult
from runtrace.schemas import Example, Run

GradingFunction = Callable[
    [GradingFunctionInput],
    Union[GradingFunctionResult, Awaitable[GradingFunctionResult]],
]


class StringEvaluator:
    """Grade a run by comparing one of its outputs against a reference answer.

    The grading function receives ``{"input", "prediction", "answer"}`` and may
    be sync or async. It must cope with ``answer`` being None.
    """

    def __init__(
        self,
        grading_function: GradingFunction,
        *,
        evaluation_name: Optional[str] = None,
        input_key: str = "input",
        prediction_key: str = "output",
        answer_key: Optional[str] = "output",
    ) -> None:
        self.grading_function = grading_function
        self.evaluation_name = evaluation_name
        self.input_key = input_key
        self.prediction_key = prediction_key
        self.answer_key = answer_key

    def __repr__(self) -> str:
        return f"StringEvaluator(evaluation_name={self.evaluation_name!r})"

    def build_input(self, run: Run, example: Optional[Example] = None) -> GradingFunctionInput:
        if not run.outputs:
            raise ValueError(f"Run {run.id} must have outputs to be evaluated")
        answer: Any = None
        if self.answer_key is not None and example is not None and example.outputs is not None:
            answer = example.outputs.get(self.answer_key)
        return {
            "input": run.inputs.get(self.input_key),
            "prediction": run.outputs.get(self.prediction_key),
            "answer": answer,
        }

    async def evaluate_run(self, run: Run, example: Optional[Example] = None) -> EvaluationResult:
        grading_input = self.build_input(run, example)
        results = self.grading_function(grading_input)
        if inspect.isawaitable(results):
            results = await results
        key = results.get("key") or self.evaluation_name
        if not key:
            raise ValueError("Evaluation name cannot be empty")
        return EvaluationResult(
            key=key,
            score=results.get("score"),
            value=results.get("value"),
            comment=results.get("comment"),
            correction=results.get("correction"),
        )


__all__ = ["StringEvaluator", "GradingFunction"]
