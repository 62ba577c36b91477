"""Tests for DatasetService: CRUD, generation-job locks and provider upload."""

from __future__ import annotations

import json
import uuid

import pytest

from botforge.core.errors import InvalidStateError, NotFoundError, ProviderError, ValidationError
from botforge.events.publisher import EventType
from botforge.providers.base import ProviderResponse
from botforge.services.datasets import DatasetService


def _line(question: str) -> str:
    return json.dumps(
        {
            "messages": [
                {"role": "user", "content": question},
                {"role": "assistant", "content": "ok"},
            ]
        }
    )


@pytest.fixture
def service(db_session, publisher, provider) -> DatasetService:
    return DatasetService(db_session, publisher, provider)


class TestCreateAndList:
    @pytest.mark.asyncio()
    async def test_create_counts_non_blank_lines(self, service, publisher) -> None:
        dataset = await service.create_dataset(
            title="Billing FAQ",
            dataset_type="chat",
            content=f"{_line('a')}\n\n{_line('b')}\n",
            tags=["billing"],
        )

        assert dataset.num_examples == 2
        assert dataset.status is None
        assert publisher.of_type(EventType.DATASET_CREATED)[0].payload["id"] == str(dataset.id)
        assert "content" not in publisher.events[0].payload

    @pytest.mark.asyncio()
    async def test_create_rejects_unknown_type(self, service) -> None:
        with pytest.raises(ValidationError):
            await service.create_dataset(title="Billing", dataset_type="sms")

    @pytest.mark.asyncio()
    async def test_create_requires_title(self, service) -> None:
        with pytest.raises(ValidationError):
            await service.create_dataset(title="  ", dataset_type="chat")

    @pytest.mark.asyncio()
    async def test_list_filters(self, service) -> None:
        await service.create_dataset(title="Billing FAQ", dataset_type="chat", description="Invoices")
        await service.create_dataset(title="Voice menu", dataset_type="voice", is_active=False)
        await service.create_dataset(title="Shipping", dataset_type="chat", description="billing address")

        by_type, total = await service.list_datasets(dataset_type="voice")
        assert total == 1
        assert by_type[0].title == "Voice menu"

        by_search, total = await service.list_datasets(search="BILLING")
        assert total == 2
        assert {d.title for d in by_search} == {"Billing FAQ", "Shipping"}

        inactive, total = await service.list_datasets(is_active=False)
        assert [d.title for d in inactive] == ["Voice menu"]

        page, total = await service.list_datasets(limit=1)
        assert len(page) == 1
        assert total == 3

    @pytest.mark.asyncio()
    async def test_get_missing(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.get_dataset(uuid.uuid4())


class TestUpdateAndDelete:
    @pytest.mark.asyncio()
    async def test_update_recounts_content(self, service, publisher) -> None:
        dataset = await service.create_dataset(title="Billing", dataset_type="chat", content=_line("a"))

        updated = await service.update_dataset(
            dataset.id, {"content": "\n".join(_line(q) for q in "abc"), "title": "Billing v2"}
        )

        assert updated.num_examples == 3
        assert updated.title == "Billing v2"
        assert len(publisher.of_type(EventType.DATASET_UPDATED)) == 1

    @pytest.mark.asyncio()
    async def test_update_rejects_unknown_field(self, service) -> None:
        dataset = await service.create_dataset(title="Billing", dataset_type="chat")

        with pytest.raises(ValidationError):
            await service.update_dataset(dataset.id, {"status": "completed"})

    @pytest.mark.asyncio()
    async def test_generation_job_only_allows_reuse_fields(self, service, make_dataset) -> None:
        dataset = await make_dataset(status="completed", content=_line("a"))

        with pytest.raises(InvalidStateError):
            await service.update_dataset(dataset.id, {"content": _line("b")})

        updated = await service.update_dataset(
            dataset.id, {"file_id": "file-123", "is_active": False, "tags": ["reviewed"]}
        )
        assert updated.file_id == "file-123"
        assert updated.is_active is False
        assert updated.content == _line("a")

    @pytest.mark.asyncio()
    async def test_delete(self, service, publisher) -> None:
        dataset = await service.create_dataset(title="Billing", dataset_type="chat")

        await service.delete_dataset(dataset.id)

        assert publisher.of_type(EventType.DATASET_DELETED)[0].payload == {"id": str(dataset.id)}
        with pytest.raises(NotFoundError):
            await service.get_dataset(dataset.id)

    @pytest.mark.asyncio()
    async def test_delete_refused_while_processing(self, service, make_dataset) -> None:
        dataset = await make_dataset(status="processing")

        with pytest.raises(InvalidStateError):
            await service.delete_dataset(dataset.id)


class TestUpload:
    @pytest.mark.asyncio()
    async def test_training_split_records_file_id(self, service, provider, make_dataset) -> None:
        dataset = await make_dataset(
            title="Billing FAQ",
            status="completed",
            content=_line("a") + "\n" + _line("b"),
            training_content=_line("a"),
            test_content=_line("b"),
        )

        result = await service.upload_dataset(dataset.id)

        assert result == {
            "file_id": "file-new",
            "split": "training",
            "bytes": len(_line("a").encode()),
            "dataset_id": str(dataset.id),
        }
        assert dataset.file_id == "file-new"
        assert ("create_file", "billing-faq-training.jsonl") in provider.calls

    @pytest.mark.asyncio()
    async def test_test_split_leaves_file_id(self, service, make_dataset) -> None:
        dataset = await make_dataset(status="completed", content=_line("a"), test_content=_line("a"))

        result = await service.upload_dataset(dataset.id, split="test")

        assert result["split"] == "test"
        assert dataset.file_id is None

    @pytest.mark.asyncio()
    async def test_hand_authored_training_uses_content(self, service, make_dataset) -> None:
        dataset = await make_dataset(content=_line("a"))

        result = await service.upload_dataset(dataset.id)

        assert result["bytes"] == len(_line("a").encode())

    @pytest.mark.asyncio()
    async def test_incomplete_generation_job_cannot_upload(self, service, make_dataset) -> None:
        dataset = await make_dataset(status="processing")

        with pytest.raises(InvalidStateError):
            await service.upload_dataset(dataset.id)

    @pytest.mark.asyncio()
    async def test_empty_split_cannot_upload(self, service, make_dataset) -> None:
        dataset = await make_dataset(content=_line("a"))

        with pytest.raises(InvalidStateError):
            await service.upload_dataset(dataset.id, split="test")

    @pytest.mark.asyncio()
    async def test_provider_rejection(self, service, provider, make_dataset) -> None:
        dataset = await make_dataset(content=_line("a"))
        provider.file_response = ProviderResponse(413, {"error": {"message": "File too large"}})

        with pytest.raises(ProviderError) as exc_info:
            await service.upload_dataset(dataset.id)

        assert exc_info.value.status_code == 413
        assert dataset.file_id is None

    @pytest.mark.asyncio()
    async def test_unknown_split(self, service, make_dataset) -> None:
        dataset = await make_dataset(content=_line("a"))

        with pytest.raises(ValidationError):
            await service.upload_dataset(dataset.id, split="validation")

    @pytest.mark.asyncio()
    async def test_requires_provider(self, db_session, publisher, make_dataset) -> None:
        dataset = await make_dataset(content=_line("a"))

        with pytest.raises(RuntimeError):
            await DatasetService(db_session, publisher).upload_dataset(dataset.id)
