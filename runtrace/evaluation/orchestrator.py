"""
Run evaluators over recorded runs and store what they return as feedback.

For each run: resolve its reference example (if any), hand run and example to
the evaluator, then create one feedback record linked to the run's id.
Evaluating the same run twice creates two records; nothing is deduplicated.
"""
from __future__ import annotations

import inspect
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterable, Dict, Iterable, List, Optional, Union

from runtrace.evaluation.evaluator import EvaluationResult, RunEvaluator
from runtrace.exceptions import EvaluatorError, RunTraceError
from runtrace.run_trees import RunTree
from runtrace.schemas import Example, Feedback, FeedbackSourceType, Run
from runtrace.utils.logger import get_logger

if TYPE_CHECKING:
    from runtrace.client import Client

logger = get_logger(__name__)

RunLike = Union[Run, RunTree, uuid.UUID, str]


@dataclass
class EvaluationOutcome:
    """Result of evaluating one run inside :func:`evaluate_runs`.

    Exactly one of ``feedback`` and ``error`` is set.
    """

    run_id: Optional[uuid.UUID]
    feedback: Optional[Feedback] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _evaluator_name(evaluator: Any) -> Optional[str]:
    return getattr(evaluator, "evaluation_name", None) or getattr(evaluator, "name", None)


async def _resolve_run(client: "Client", run: RunLike) -> Run:
    if isinstance(run, Run):
        return run
    if isinstance(run, RunTree):
        # Grade what the service stored, not the local copy
        return await client.read_run(run.id)
    return await client.read_run(run)


async def _resolve_example(
    client: "Client",
    reference_example: Optional[Union[Example, uuid.UUID, str]],
    run: Run,
) -> Optional[Example]:
    """Fetch the example to grade against; None when it cannot be resolved."""
    if isinstance(reference_example, Example):
        return reference_example
    example_id = reference_example if reference_example is not None else run.reference_example_id
    if example_id is None:
        return None
    try:
        return await client.read_example(example_id)
    except (RunTraceError, ValueError) as exc:
        logger.warning(
            "reference_example_unresolved",
            run_id=str(run.id),
            example_id=str(example_id),
            error=str(exc),
        )
        return None


async def _grade(evaluator: RunEvaluator, run: Run, example: Optional[Example]) -> EvaluationResult:
    try:
        result = evaluator.evaluate_run(run, example=example)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, dict):
            result = EvaluationResult.model_validate(result)
        if not isinstance(result, EvaluationResult):
            raise TypeError(f"Evaluator returned {type(result).__name__}, expected EvaluationResult")
    except Exception as exc:
        logger.warning(
            "evaluation_failed",
            run_id=str(run.id),
            evaluator=_evaluator_name(evaluator),
            error=str(exc),
        )
        raise EvaluatorError(str(exc), run_id=run.id, evaluator_name=_evaluator_name(evaluator)) from exc
    return result


async def evaluate_run(
    client: "Client",
    run: RunLike,
    evaluator: RunEvaluator,
    *,
    source_info: Optional[Dict[str, Any]] = None,
    reference_example: Optional[Union[Example, uuid.UUID, str]] = None,
) -> Feedback:
    """Grade one run and persist the result as feedback.

    Args:
        client: Client used to read the run/example and create feedback.
        run: A stored run, a run tree (read back by id), or a run id.
        evaluator: Any object with an ``evaluate_run(run, example=None)`` method.
        source_info: Stored as the feedback source metadata.
        reference_example: Overrides the run's own reference example.

    Raises:
        EvaluatorError: if the evaluator raised or returned something unusable.
        RunTraceError: if the run could not be read or the feedback not stored.
    """
    run_ = await _resolve_run(client, run)
    example = await _resolve_example(client, reference_example, run_)
    result = await _grade(evaluator, run_, example)
    return await client.create_feedback(
        run_.id,
        result.key,
        score=result.score,
        value=result.value,
        comment=result.comment,
        correction=result.correction,
        source_info=source_info,
        feedback_source_type=FeedbackSourceType.MODEL,
    )


def _run_id_of(run: RunLike) -> Optional[uuid.UUID]:
    if isinstance(run, (Run, RunTree)):
        return run.id
    try:
        return uuid.UUID(str(run))
    except ValueError:
        return None


async def evaluate_runs(
    client: "Client",
    runs: Union[Iterable[RunLike], AsyncIterable[RunLike]],
    evaluator: RunEvaluator,
    *,
    source_info: Optional[Dict[str, Any]] = None,
) -> List[EvaluationOutcome]:
    """Evaluate runs one after another, collecting an outcome per run.

    A failure on one run (evaluator error, invalid id, unreadable or malformed
    run, rejected feedback) is recorded in its outcome and the next run is
    processed. Errors raised while iterating ``runs`` itself (e.g. a failed page fetch) propagate.
    """
    outcomes: List[EvaluationOutcome] = []

    async def _one(run: RunLike) -> None:
        try:
            feedback = await evaluate_run(client, run, evaluator, source_info=source_info)
        except (RunTraceError, ValueError) as exc:
            # ValueError covers invalid ids and malformed responses (pydantic ValidationError)
            outcomes.append(EvaluationOutcome(run_id=_run_id_of(run), error=exc))
        else:
            outcomes.append(EvaluationOutcome(run_id=feedback.run_id, feedback=feedback))

    if hasattr(runs, "__aiter__"):
        async for run in runs:  # type: ignore[union-attr]
            await _one(run)
    else:
        for run in runs:  # type: ignore[union-attr]
            await _one(run)

    failed = sum(1 for o in outcomes if not o.ok)
    logger.info("evaluation_finished", evaluator=_evaluator_name(evaluator), runs=len(outcomes), failed=failed)
    return outcomes


__all__ = ["EvaluationOutcome", "evaluate_run", "evaluate_runs"]
