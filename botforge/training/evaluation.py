"""Model evaluation against held-out examples.

Each test example's first user message is sent to the model under test and
the reply is compared to the example's first assistant message by Jaccard
similarity over lower-cased word sets. A reply counts as correct at or
above the similarity threshold (0.70 by default).

Report lifecycle::

    testing -> completed
            -> failed

A report is never left ``testing`` once run() returns, and is not mutated
after it completes.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from botforge.config import Settings, get_settings
from botforge.infra.background_worker import BackgroundWorkerPool, TaskType
from botforge.models.training_report import ReportStatus, TrainingReport
from botforge.providers.base import TrainingProvider
from botforge.telemetry.logging import bind_job_context

log = structlog.get_logger(__name__)

# -ln(similarity) is undefined at 0; such results contribute this instead
ZERO_SIMILARITY_PENALTY = 10.0

HIGH_SIMILARITY = 0.8
MEDIUM_SIMILARITY = 0.5


def jaccard_similarity(left: str, right: str) -> float:
    """Word-set overlap of two texts; 0.0 when both are empty."""
    left_words = set(left.lower().split())
    right_words = set(right.lower().split())
    union = left_words | right_words
    if not union:
        return 0.0
    return len(left_words & right_words) / len(union)


@dataclass
class TestResult:
    """Outcome of scoring one example."""

    __test__ = False

    input: str
    expected: str
    predicted: str
    correct: bool
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": self.input,
            "expected": self.expected,
            "predicted": self.predicted,
            "correct": self.correct,
            "similarity": self.similarity,
        }


def _first_message(example: dict[str, Any], role: str) -> str | None:
    for message in example.get("messages", []):
        if isinstance(message, dict) and message.get("role") == role:
            content = message.get("content")
            if isinstance(content, str) and content:
                return content
    return None


def compute_metrics(results: list[TestResult], threshold: float = 0.7) -> dict[str, Any]:
    """Aggregate metrics over scored results.

    Returns:
        Dict with accuracy, precision, recall, f1_score, perplexity,
        confusion_matrix and detailed_metrics. Every metric is 0 for an
        empty result list.
    """
    total = len(results)
    if total == 0:
        return {
            "accuracy": 0.0,
            "precision": 0.0,
            "recall": 0.0,
            "f1_score": 0.0,
            "perplexity": 0.0,
            "confusion_matrix": {
                "true_positives": 0,
                "false_positives": 0,
                "false_negatives": 0,
                "true_negatives": 0,
            },
            "detailed_metrics": {
                "total_tests": 0,
                "correct_predictions": 0,
                "incorrect_predictions": 0,
                "average_similarity": 0.0,
                "similarity_distribution": {"high": 0, "medium": 0, "low": 0},
            },
        }

    correct = sum(1 for r in results if r.correct)
    tp = sum(1 for r in results if r.similarity >= threshold)
    fp = sum(1 for r in results if r.similarity < threshold and r.correct)
    fn = sum(1 for r in results if r.similarity >= threshold and not r.correct)
    tn = total - tp - fp - fn

    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    perplexity = sum(
        -math.log(r.similarity) if r.similarity > 0 else ZERO_SIMILARITY_PENALTY
        for r in results
    ) / total

    return {
        "accuracy": correct / total,
        "precision": precision,
        "recall": recall,
        "f1_score": f1,
        "perplexity": perplexity,
        "confusion_matrix": {
            "true_positives": tp,
            "false_positives": fp,
            "false_negatives": fn,
            "true_negatives": tn,
        },
        "detailed_metrics": {
            "total_tests": total,
            "correct_predictions": correct,
            "incorrect_predictions": total - correct,
            "average_similarity": sum(r.similarity for r in results) / total,
            "similarity_distribution": {
                "high": sum(1 for r in results if r.similarity >= HIGH_SIMILARITY),
                "medium": sum(
                    1 for r in results if MEDIUM_SIMILARITY <= r.similarity < HIGH_SIMILARITY
                ),
                "low": sum(1 for r in results if r.similarity < MEDIUM_SIMILARITY),
            },
        },
    }


def new_report(
    *,
    model_id: str,
    test_examples: int,
    fine_tune_job_id: uuid.UUID | None = None,
    bot_id: uuid.UUID | None = None,
    dataset_id: uuid.UUID | None = None,
    base_model: str | None = None,
    training_file_id: str | None = None,
    test_file_id: str | None = None,
    created_by: str | None = None,
) -> TrainingReport:
    """An unsaved report in ``testing`` state."""
    return TrainingReport(
        fine_tune_job_id=fine_tune_job_id,
        bot_id=bot_id,
        dataset_id=dataset_id,
        training_file_id=training_file_id,
        test_file_id=test_file_id,
        training_examples=0,
        test_examples=test_examples,
        model_name=model_id,
        base_model=base_model,
        fine_tuned_model=model_id,
        status=ReportStatus.TESTING.value,
        created_by=created_by,
    )


class ModelEvaluator:
    """Scores a model on test examples and records a TrainingReport."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: TrainingProvider,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._settings = settings or get_settings()

    async def evaluate(
        self,
        model_id: str,
        test_examples: list[dict[str, Any]],
        **references: Any,
    ) -> TrainingReport:
        """Create a report and score ``test_examples`` inline.

        Keyword references (fine_tune_job_id, bot_id, dataset_id,
        base_model, training_file_id, test_file_id, created_by) are stored on
        the report.
        """
        async with self._session_factory() as db:
            report = new_report(model_id=model_id, test_examples=len(test_examples), **references)
            db.add(report)
            await db.commit()
        return await self.run(report.id, test_examples)

    async def handle_task(self, payload: dict[str, Any]) -> None:
        """Worker pool entry point."""
        await self.run(uuid.UUID(payload["report_id"]), payload.get("examples") or [])

    async def run(self, report_id: uuid.UUID, test_examples: list[dict[str, Any]]) -> TrainingReport:
        bind_job_context(report_id=report_id)
        async with self._session_factory() as db:
            report = await db.get(TrainingReport, report_id)
            if report is None:
                raise ValueError(f"Training report {report_id} not found")
            if report.status != ReportStatus.TESTING.value:
                log.warning("evaluation.report_not_testing", status=report.status)
                return report
            try:
                results = await self.score(report.fine_tuned_model or report.model_name, test_examples)
                metrics = compute_metrics(results, self._settings.evaluation_similarity_threshold)

                report.accuracy = metrics["accuracy"]
                report.precision = metrics["precision"]
                report.recall = metrics["recall"]
                report.f1_score = metrics["f1_score"]
                report.perplexity = metrics["perplexity"]
                report.confusion_matrix = metrics["confusion_matrix"]
                report.detailed_metrics = metrics["detailed_metrics"]
                report.test_results = [r.to_dict() for r in results]
                report.status = ReportStatus.COMPLETED.value
                report.completed_at = datetime.now(UTC)
                await db.commit()
                log.info(
                    "evaluation.completed",
                    model=report.model_name,
                    tests=len(results),
                    accuracy=report.accuracy,
                )
            except Exception as exc:
                log.error("evaluation.failed", error=str(exc), exc_info=True)
                await db.rollback()
                report = await db.get(TrainingReport, report_id)
                if report is None:
                    raise
                report.status = ReportStatus.FAILED.value
                report.error = {
                    "message": str(exc) or type(exc).__name__,
                    "timestamp": datetime.now(UTC).isoformat(),
                }
                report.completed_at = datetime.now(UTC)
                await db.commit()
            return report

    async def score(self, model_id: str, test_examples: list[dict[str, Any]]) -> list[TestResult]:
        """Score each example that has both a user and an assistant message."""
        threshold = self._settings.evaluation_similarity_threshold
        results: list[TestResult] = []
        for example in test_examples:
            user = _first_message(example, "user")
            expected = _first_message(example, "assistant")
            if user is None or expected is None:
                continue

            try:
                predicted = await self._provider.chat_complete(
                    model=model_id,
                    messages=[{"role": "user", "content": user}],
                    temperature=self._settings.evaluation_temperature,
                    max_tokens=self._settings.evaluation_max_tokens,
                )
            except Exception as exc:
                log.warning("evaluation.prediction_failed", model=model_id, error=str(exc))
                results.append(TestResult(user, expected, "", False, 0.0))
                continue

            similarity = jaccard_similarity(expected, predicted)
            results.append(
                TestResult(user, expected, predicted, similarity >= threshold, similarity)
            )
        return results


async def schedule_evaluation(
    db: AsyncSession,
    worker_pool: BackgroundWorkerPool,
    *,
    model_id: str,
    test_examples: list[dict[str, Any]],
    **references: Any,
) -> TrainingReport:
    """Persist a ``testing`` report, commit, then queue its scoring run."""
    report = new_report(model_id=model_id, test_examples=len(test_examples), **references)
    db.add(report)
    await db.commit()

    await worker_pool.submit_task(
        task_type=TaskType.MODEL_EVALUATION,
        payload={"report_id": str(report.id), "examples": test_examples},
    )
    log.info(
        "evaluation.scheduled",
        report_id=str(report.id),
        model=model_id,
        test_examples=len(test_examples),
    )
    return report
