import uuid

import pytest

from runtrace.evaluation import EvaluationResult, RunEvaluator, StringEvaluator, jaccard_grader
from runtrace.schemas import Example, Run


def _run(outputs=None, **kwargs):
    return Run(id=uuid.uuid4(), name="chain", run_type="chain", inputs={"input": "hello world"}, outputs=outputs, **kwargs)


def _example(outputs):
    return Example(id=uuid.uuid4(), dataset_id=uuid.uuid4(), inputs={"input": "hello world"}, outputs=outputs)


def test_string_evaluator_satisfies_the_evaluator_protocol():
    assert isinstance(StringEvaluator(jaccard_grader(), evaluation_name="Jaccard"), RunEvaluator)


def test_build_input_maps_run_and_example_fields():
    evaluator = StringEvaluator(jaccard_grader(), evaluation_name="Jaccard")
    built = evaluator.build_input(_run({"output": "abcd"}), _example({"output": "bcde"}))
    assert built == {"input": "hello world", "prediction": "abcd", "answer": "bcde"}


@pytest.mark.parametrize("example", [None, _example(None), _example({"other": "x"})])
def test_answer_is_none_without_usable_reference(example):
    evaluator = StringEvaluator(jaccard_grader(), evaluation_name="Jaccard")
    assert evaluator.build_input(_run({"output": "abcd"}), example)["answer"] is None


def test_custom_keys():
    evaluator = StringEvaluator(
        jaccard_grader(), evaluation_name="Jaccard", input_key="q", prediction_key="text", answer_key="gold"
    )
    run = Run(id=uuid.uuid4(), name="r", run_type="llm", inputs={"q": "why"}, outputs={"text": "because"})
    built = evaluator.build_input(run, _example({"gold": "because"}))
    assert built == {"input": "why", "prediction": "because", "answer": "because"}


@pytest.mark.asyncio
async def test_evaluate_run_scores_with_jaccard():
    evaluator = StringEvaluator(jaccard_grader(), evaluation_name="Jaccard")
    result = await evaluator.evaluate_run(_run({"output": "abcd"}), _example({"output": "bcde"}))
    assert isinstance(result, EvaluationResult)
    assert result.key == "Jaccard"
    assert result.score == pytest.approx(0.6)
    assert result.value == "INCORRECT"


@pytest.mark.asyncio
async def test_async_grader_and_key_override():
    async def grade(config):
        return {"key": "custom", "score": 1.0, "comment": config["prediction"]}

    result = await StringEvaluator(grade, evaluation_name="ignored").evaluate_run(_run({"output": "x"}))
    assert (result.key, result.score, result.comment) == ("custom", 1.0, "x")


@pytest.mark.asyncio
async def test_missing_evaluation_name_rejected():
    evaluator = StringEvaluator(lambda config: {"score": 1.0})
    with pytest.raises(ValueError, match="Evaluation name"):
        await evaluator.evaluate_run(_run({"output": "x"}))


@pytest.mark.asyncio
async def test_run_without_outputs_rejected():
    evaluator = StringEvaluator(jaccard_grader(), evaluation_name="Jaccard")
    with pytest.raises(ValueError, match="must have outputs"):
        await evaluator.evaluate_run(_run(None))
