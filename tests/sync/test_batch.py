"""Tests for submit_batch — concurrent, independent lifecycles."""

import asyncio

import pytest

from optisync.core.errors import NetworkError, ValidationError
from optisync.core.result import FailureReason
from optisync.sync import BatchOperation, DomainRecord, OptimisticSyncCoordinator, RetryConfig


class TestSubmitBatch:
    """Tests for OptimisticSyncCoordinator.submit_batch."""

    @pytest.mark.asyncio
    async def test_empty(self, coordinator):
        batch = await coordinator.submit_batch([])
        assert batch.total == 0
        assert batch.all_succeeded is True

    @pytest.mark.asyncio
    async def test_outcomes_keep_submission_order(self, coordinator, scripted_remote):
        items = [
            BatchOperation("notes", "create", {"id": f"n-{i}"}, scripted_remote({"id": f"n-{i}"}))
            for i in range(5)
        ]
        batch = await coordinator.submit_batch(items)
        assert [o.record_id for o in batch.successful] == [f"n-{i}" for i in range(5)]
        operation_ids = [o.operation_id for o in batch.successful]
        assert all(operation_ids) and len(set(operation_ids)) == 5
        assert all(item.operation_id is None for item in items)

    @pytest.mark.asyncio
    async def test_mixed_kinds_and_types(self, coordinator, scripted_remote):
        coordinator.store.upsert("tasks", DomainRecord("tasks", "t-1", {"id": "t-1", "done": False}))
        coordinator.store.upsert("vendors", DomainRecord("vendors", "v-1", {"id": "v-1"}))

        batch = await coordinator.submit_batch(
            [
                BatchOperation("notes", "create", {"title": "x"}, scripted_remote({"id": "n-1", "title": "x"})),
                BatchOperation(
                    "tasks", "update", {"id": "t-1", "done": True},
                    scripted_remote(ValidationError("locked")),
                ),
                BatchOperation("vendors", "delete", {"id": "v-1"}, scripted_remote(None), record_id="v-1"),
            ]
        )

        assert batch.total == 3
        assert [o.data_type for o in batch.successful] == ["notes", "vendors"]
        assert [o.data_type for o in batch.failed] == ["tasks"]
        assert batch.successful[0].record_id == "n-1"
        assert coordinator.store.get("tasks", "t-1").payload == {"id": "t-1", "done": False}
        assert coordinator.store.get("vendors", "v-1") is None

    @pytest.mark.asyncio
    async def test_retrying_item_does_not_block_siblings(self, coordinator, scripted_remote):
        flaky = scripted_remote(NetworkError("down"), NetworkError("down"), {"id": "slow"})
        batch = await coordinator.submit_batch(
            [
                BatchOperation("notes", "create", {"id": "slow"}, flaky),
                BatchOperation("notes", "create", {"id": "fast"}, scripted_remote({"id": "fast"})),
            ]
        )
        assert batch.all_succeeded
        assert batch.successful[0].result.attempts == 3
        assert batch.successful[1].result.attempts == 1

    @pytest.mark.asyncio
    async def test_item_without_id_fails_alone(self, coordinator, scripted_remote):
        """An item that cannot even start fails alone."""
        batch = await coordinator.submit_batch(
            [
                BatchOperation("notes", "update", {"title": "no id"}, scripted_remote({"id": "x"}), operation_id="op_bad"),
                BatchOperation("notes", "create", {"id": "ok"}, scripted_remote({"id": "ok"})),
            ]
        )
        assert [o.record_id for o in batch.successful] == ["ok"]
        failed = batch.failed[0]
        assert failed.operation_id == "op_bad"
        assert failed.record_id is None
        assert failed.result.error_code == "INTERNAL"
        assert failed.result.failure_reason is FailureReason.NON_RETRYABLE
        assert "requires a record id" in failed.result.error

    @pytest.mark.asyncio
    async def test_raising_item_becomes_failed_outcome(self, coordinator, scripted_remote):
        batch = await coordinator.submit_batch(
            [
                BatchOperation("notes", "upsert", {"id": "n-1"}, scripted_remote({"id": "n-1"})),
                BatchOperation("notes", "create", {"id": "ok"}, scripted_remote({"id": "ok"})),
            ]
        )
        assert [o.record_id for o in batch.successful] == ["ok"]
        assert batch.failed[0].result.error_code == "INTERNAL"
        assert batch.failed[0].operation_id

    @pytest.mark.asyncio
    async def test_caller_operation_ids_kept(self, coordinator, scripted_remote):
        items = [
            BatchOperation("notes", "create", {"id": "A"}, scripted_remote({"id": "A"}), operation_id="op_a"),
            BatchOperation("notes", "create", {"id": "B"}, scripted_remote({"id": "B"})),
        ]
        batch = await coordinator.submit_batch(items)

        assert batch.successful[0].operation_id == "op_a"
        assert batch.successful[1].operation_id.startswith("op_")
        assert items[1].operation_id is None

    @pytest.mark.asyncio
    async def test_duplicate_operation_ids_do_not_evict_each_other(self, coordinator):
        first_done = asyncio.Event()
        second_done = asyncio.Event()

        def waiting_for(event, value):
            async def remote():
                await event.wait()
                return value

            return remote

        task = asyncio.create_task(
            coordinator.submit_batch(
                [
                    BatchOperation("notes", "create", {"id": "A"}, waiting_for(first_done, {"id": "A"}),
                                   operation_id="op_dup"),
                    BatchOperation("notes", "create", {"id": "B"}, waiting_for(second_done, {"id": "B"}),
                                   operation_id="op_dup"),
                ]
            )
        )
        for _ in range(5):
            await asyncio.sleep(0)
        first_done.set()
        for _ in range(5):
            await asyncio.sleep(0)

        pending = coordinator.pending_operations("notes")
        assert [op.record_id for op in pending] == ["B"]

        second_done.set()
        batch = await task
        assert batch.all_succeeded
        assert coordinator.has_pending_operations() is False
    @pytest.mark.asyncio
    async def test_per_item_retry_config(self, coordinator, scripted_remote):
        batch = await coordinator.submit_batch(
            [
                BatchOperation(
                    "notes", "create", {"id": "n-1"}, scripted_remote(NetworkError("down")),
                    retry_config=RetryConfig(max_retries=0),
                ),
            ]
        )
        assert batch.failed[0].result.attempts == 1
        assert batch.failed[0].result.failure_reason is FailureReason.RETRIES_EXHAUSTED

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, settings):
        coordinator = OptimisticSyncCoordinator(settings=settings, batch_max_concurrency=2)
        active = 0
        peak = 0

        async def remote():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            for _ in range(3):
                await asyncio.sleep(0)
            active -= 1
            return None

        batch = await coordinator.submit_batch(
            [BatchOperation("notes", "create", {"id": f"n-{i}"}, remote) for i in range(6)]
        )
        assert batch.all_succeeded
        assert peak == 2

    @pytest.mark.asyncio
    async def test_to_dict(self, coordinator, scripted_remote):
        batch = await coordinator.submit_batch(
            [
                BatchOperation("notes", "create", {"id": "A"}, scripted_remote({"id": "A"})),
                BatchOperation("notes", "create", {"id": "B"}, scripted_remote(ValidationError("bad"))),
            ]
        )
        data = batch.to_dict()
        assert data["total"] == 2
        assert data["failed"][0]["record_id"] == "B"
        assert data["failed"][0]["error_code"] == "VALIDATION"
