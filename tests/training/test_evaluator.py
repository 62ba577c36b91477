"""Tests for model evaluation: similarity scoring, metrics and report lifecycle."""

from __future__ import annotations

import math
import uuid
from unittest.mock import AsyncMock

import pytest

from botforge.infra.background_worker import TaskType
from botforge.models.training_report import TrainingReport
from botforge.providers.llm import LLMUnavailableError
from botforge.training.evaluation import (
    ModelEvaluator,
    TestResult,
    compute_metrics,
    jaccard_similarity,
    new_report,
    schedule_evaluation,
)


def _example(question: str, answer: str) -> dict:
    return {
        "messages": [
            {"role": "user", "content": question},
            {"role": "assistant", "content": answer},
        ]
    }


@pytest.fixture
def evaluator(session_factory, provider, fake_settings) -> ModelEvaluator:
    return ModelEvaluator(session_factory, provider, fake_settings)


class TestJaccardSimilarity:
    def test_identical_texts(self) -> None:
        assert jaccard_similarity("Refunds take 5 days", "refunds TAKE 5 days") == 1.0

    def test_partial_overlap(self) -> None:
        # {a, b, c} vs {b, c, d}: 2 shared of 4
        assert jaccard_similarity("a b c", "b c d") == 0.5

    def test_both_empty(self) -> None:
        assert jaccard_similarity("", "   ") == 0.0


class TestComputeMetrics:
    def test_empty_results_are_all_zero(self) -> None:
        metrics = compute_metrics([])

        assert metrics["accuracy"] == 0.0
        assert metrics["perplexity"] == 0.0
        assert metrics["detailed_metrics"]["total_tests"] == 0

    def test_seven_of_ten_correct(self) -> None:
        results = [TestResult("q", "e", "p", True, 1.0) for _ in range(7)]
        results += [TestResult("q", "e", "p", False, 0.25) for _ in range(3)]

        metrics = compute_metrics(results, threshold=0.7)

        assert metrics["accuracy"] == pytest.approx(0.7)
        assert metrics["precision"] == 1.0
        assert metrics["recall"] == 1.0
        assert metrics["f1_score"] == 1.0
        assert metrics["confusion_matrix"] == {
            "true_positives": 7,
            "false_positives": 0,
            "false_negatives": 0,
            "true_negatives": 3,
        }
        assert metrics["perplexity"] == pytest.approx(3 * -math.log(0.25) / 10)
        assert metrics["detailed_metrics"]["similarity_distribution"] == {
            "high": 7,
            "medium": 0,
            "low": 3,
        }

    def test_zero_similarity_uses_penalty(self) -> None:
        metrics = compute_metrics([TestResult("q", "e", "", False, 0.0)])
        assert metrics["perplexity"] == 10.0


class TestModelEvaluator:
    @pytest.mark.asyncio()
    async def test_evaluate_completes_report(self, evaluator, provider, session_factory) -> None:
        examples = [_example(f"Question {i}", f"answer number {i}") for i in range(10)]
        for i in range(7):
            provider.chat_replies[f"Question {i}"] = f"Answer number {i}"
        for i in range(7, 10):
            provider.chat_replies[f"Question {i}"] = "something unrelated"

        report = await evaluator.evaluate("ft:M1", examples, bot_id=uuid.uuid4())

        assert report.status == "completed"
        assert report.accuracy == pytest.approx(0.7)
        assert report.test_examples == 10
        assert len(report.test_results) == 10
        assert report.completed_at is not None
        assert ("chat_complete", "ft:M1") in provider.calls

        async with session_factory() as session:
            stored = await session.get(TrainingReport, report.id)
        assert stored.status == "completed"
        assert stored.confusion_matrix["true_positives"] == 7

    @pytest.mark.asyncio()
    async def test_failed_prediction_counts_as_incorrect(self, evaluator, provider) -> None:
        provider.chat_replies["Q1"] = "A1"
        provider.chat_replies["Q2"] = LLMUnavailableError("model not found")

        report = await evaluator.evaluate("ft:M1", [_example("Q1", "A1"), _example("Q2", "A2")])

        assert report.status == "completed"
        assert report.accuracy == 0.5
        failed = report.test_results[1]
        assert failed["predicted"] == ""
        assert failed["similarity"] == 0.0
        assert failed["correct"] is False

    @pytest.mark.asyncio()
    async def test_examples_without_both_roles_are_skipped(self, evaluator) -> None:
        examples = [{"messages": [{"role": "user", "content": "only a question"}]}]

        report = await evaluator.evaluate("ft:M1", examples)

        assert report.status == "completed"
        assert report.test_results == []
        assert report.accuracy == 0.0

    @pytest.mark.asyncio()
    async def test_scoring_failure_marks_report_failed(self, evaluator, monkeypatch) -> None:
        monkeypatch.setattr(evaluator, "score", AsyncMock(side_effect=RuntimeError("scorer crashed")))

        report = await evaluator.evaluate("ft:M1", [_example("q", "a")])

        assert report.status == "failed"
        assert report.error["message"] == "scorer crashed"
        assert report.completed_at is not None

    @pytest.mark.asyncio()
    async def test_completed_report_is_not_rescored(self, evaluator, provider, session_factory) -> None:
        report = await evaluator.evaluate("ft:M1", [])
        calls_before = len(provider.calls)

        again = await evaluator.run(report.id, [_example("q", "a")])

        assert again.status == "completed"
        assert len(provider.calls) == calls_before

    @pytest.mark.asyncio()
    async def test_handle_task_runs_scheduled_report(self, evaluator, provider, db_session) -> None:
        report = new_report(model_id="ft:M1", test_examples=1)
        db_session.add(report)
        await db_session.commit()
        provider.chat_replies["q"] = "a"

        await evaluator.handle_task({"report_id": str(report.id), "examples": [_example("q", "a")]})

        await db_session.refresh(report)
        assert report.status == "completed"
        assert report.accuracy == 1.0


@pytest.mark.asyncio()
async def test_schedule_evaluation_commits_before_submit(db_session) -> None:
    pool = AsyncMock()

    report = await schedule_evaluation(
        db_session, pool, model_id="ft:M1", test_examples=[_example("q", "a")], base_model="gpt-4o-mini"
    )

    assert report.status == "testing"
    assert report.base_model == "gpt-4o-mini"
    pool.submit_task.assert_awaited_once_with(
        task_type=TaskType.MODEL_EVALUATION,
        payload={"report_id": str(report.id), "examples": [_example("q", "a")]},
    )
