"""Tests for TrainingReportService."""

from __future__ import annotations

import uuid

import pytest

from botforge.core.errors import NotFoundError
from botforge.services.training_reports import TrainingReportService
from botforge.training.evaluation import new_report


@pytest.mark.asyncio()
async def test_list_filters_by_reference(db_session) -> None:
    bot_id, job_id = uuid.uuid4(), uuid.uuid4()
    db_session.add(new_report(model_id="ft:M1", test_examples=4, bot_id=bot_id, fine_tune_job_id=job_id))
    db_session.add(new_report(model_id="ft:M2", test_examples=2, bot_id=bot_id))
    db_session.add(new_report(model_id="ft:M3", test_examples=1))
    await db_session.commit()
    service = TrainingReportService(db_session)

    by_bot, total = await service.list_reports(bot_id=bot_id)
    assert total == 2
    assert {r.model_name for r in by_bot} == {"ft:M1", "ft:M2"}

    by_job, total = await service.list_reports(fine_tune_job_id=job_id)
    assert [r.model_name for r in by_job] == ["ft:M1"]

    testing, total = await service.list_reports(status="testing")
    assert total == 3

    completed, total = await service.list_reports(status="completed")
    assert completed == []
    assert total == 0


@pytest.mark.asyncio()
async def test_get_report(db_session) -> None:
    report = new_report(model_id="ft:M1", test_examples=1)
    db_session.add(report)
    await db_session.commit()
    service = TrainingReportService(db_session)

    assert (await service.get_report(report.id)).fine_tuned_model == "ft:M1"
    with pytest.raises(NotFoundError):
        await service.get_report(uuid.uuid4())
