"""
Tests for the sync job runner: source batches through the pipeline into storage.
"""
import pytest

from collector_nexus.core.exceptions import ProviderError, SourceNotFoundError
from collector_nexus.repositories.record_repo import RecordStorage, StorageQuery
from collector_nexus.services.acquisition.runner import retry_failed_records, run_sync_job
from collector_nexus.services.processing.pipeline import ProcessingPipeline
from collector_nexus.services.sources.manager import DataSourceManager
from tests.fakes import FakeSource


@pytest.fixture
def storage(session_maker):
    return RecordStorage(session_maker)


@pytest.fixture
def pipeline():
    return ProcessingPipeline()


def manager_with(*sources):
    manager = DataSourceManager()
    for source in sources:
        manager.register_source(source)
    return manager


class TestRunSyncJob:
    @pytest.mark.asyncio
    async def test_records_are_processed_and_stored(self, pipeline, storage):
        source = FakeSource("A", {
            "1": {"id": "1", "name": " Lightning Bolt "},
            "2": {"id": "2", "name": "Counterspell"},
            "3": {"id": "3", "name": "Dark Ritual"},
        })
        manager = manager_with(source)

        stats = await run_sync_job(manager, pipeline, storage, "A")

        assert stats == {"source": "A", "kind": "data", "total": 3, "processed": 3, "failed": 0}
        item = await storage.find_item_by_id("A:card:1")
        assert item["status"] == "processed"
        assert item["data"]["name"] == "Lightning Bolt"
        assert source.initialize_count == 1

    @pytest.mark.asyncio
    async def test_failed_records_are_stored_and_counted(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {
            "1": {"id": "1", "name": "Lightning Bolt"},
            "2": {"id": "2"},
        }))

        stats = await run_sync_job(manager, pipeline, storage, "A")

        assert stats["processed"] == 1
        assert stats["failed"] == 1
        failed = await storage.find_items(StorageQuery(filter={"status": "failed"}))
        assert [item["id"] for item in failed] == ["2"]
        assert failed[0]["error"] == "Validation failed: Missing required field: name"

    @pytest.mark.asyncio
    async def test_rerun_updates_existing_items(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {"1": {"id": "1", "name": "Lightning Bolt"}}))

        await run_sync_job(manager, pipeline, storage, "A")
        await run_sync_job(manager, pipeline, storage, "A")

        assert len(await storage.find_items(StorageQuery())) == 1

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self, pipeline, storage):
        with pytest.raises(SourceNotFoundError):
            await run_sync_job(manager_with(FakeSource("A")), pipeline, storage, "Z")

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {"1": {"id": "1"}}, fail=ProviderError("A", "HTTP 503")))

        with pytest.raises(ProviderError):
            await run_sync_job(manager, pipeline, storage, "A")

    @pytest.mark.asyncio
    async def test_repeated_failure_increments_retry_count(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {"2": {"id": "2"}}))

        for _ in range(3):
            await run_sync_job(manager, pipeline, storage, "A")

        item = await storage.find_item_by_id("A:card:2")
        assert item["status"] == "failed"
        assert item["metadata"]["retry_count"] == 2

    @pytest.mark.asyncio
    async def test_fixed_record_keeps_retry_count(self, pipeline, storage):
        source = FakeSource("A", {"2": {"id": "2"}})
        manager = manager_with(source)
        await run_sync_job(manager, pipeline, storage, "A")

        source.records["2"] = {"id": "2", "name": "Counterspell"}
        stats = await run_sync_job(manager, pipeline, storage, "A")

        assert stats["processed"] == 1
        item = await storage.find_item_by_id("A:card:2")
        assert item["status"] == "processed"
        assert item["error"] is None
        assert item["metadata"]["retry_count"] == 1

    @pytest.mark.asyncio
    async def test_processed_record_is_not_counted_as_retry(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {"1": {"id": "1", "name": "Lightning Bolt"}}))

        await run_sync_job(manager, pipeline, storage, "A")
        await run_sync_job(manager, pipeline, storage, "A")

        item = await storage.find_item_by_id("A:card:1")
        assert item["metadata"]["retry_count"] == 0


class TestRetryFailedRecords:
    @pytest.mark.asyncio
    async def test_failed_records_are_reprocessed(self, storage):
        manager = manager_with(FakeSource("A", {
            "1": {"id": "1", "name": "Lightning Bolt"},
            "2": {"id": "2"},
        }))
        await run_sync_job(manager, ProcessingPipeline(), storage, "A")

        # A pipeline without the required-fields rule accepts the stored payload
        lenient = ProcessingPipeline()
        lenient.remove_validation_rule("required-fields")
        stats = await retry_failed_records(lenient, storage, source_id="A")

        assert stats == {"source": "A", "total": 1, "processed": 1, "failed": 0}
        item = await storage.find_item_by_id("A:card:2")
        assert item["status"] == "processed"
        assert item["metadata"]["retry_count"] == 1
        assert await storage.find_items(StorageQuery(filter={"status": "failed"})) == []

    @pytest.mark.asyncio
    async def test_records_failing_again_stay_failed(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {"2": {"id": "2"}}))
        await run_sync_job(manager, pipeline, storage, "A")

        await retry_failed_records(pipeline, storage)
        stats = await retry_failed_records(pipeline, storage)

        assert stats["failed"] == 1
        item = await storage.find_item_by_id("A:card:2")
        assert item["status"] == "failed"
        assert item["metadata"]["retry_count"] == 2

    @pytest.mark.asyncio
    async def test_other_sources_are_left_alone(self, pipeline, storage):
        manager = manager_with(FakeSource("A", {"2": {"id": "2"}}), FakeSource("B", {"3": {"id": "3"}}))
        await run_sync_job(manager, pipeline, storage, "A")
        await run_sync_job(manager, pipeline, storage, "B")

        stats = await retry_failed_records(pipeline, storage, source_id="A")

        assert stats["total"] == 1
        item = await storage.find_item_by_id("B:card:3")
        assert item["metadata"]["retry_count"] == 0
