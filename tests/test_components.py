"""Tests for the engine's building blocks: clock, store, idempotency index, backoff, events."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from chain_worker.queue import (
    EventSink,
    IdempotencyIndex,
    Job,
    JobStatus,
    JobStore,
    ManualClock,
    RetryPolicy,
    SystemClock,
    compute_delay_ms,
    derive_idempotency_key,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_job(job_id: str, status: JobStatus = JobStatus.PENDING) -> Job:
    return Job(
        id=job_id,
        type="REGISTER_EVENT",
        payload={"batchId": job_id},
        idempotency_key=f"key-{job_id}",
        status=status,
        max_attempts=3,
        next_attempt_at=T0,
        created_at=T0,
    )


class TestClock:

    def test_manual_clock_advances(self):
        clock = ManualClock(T0)
        assert clock.now() == T0
        assert clock.advance(ms=250) == T0 + timedelta(milliseconds=250)
        clock.advance(seconds=1)
        assert clock.now() == T0 + timedelta(milliseconds=1250)

    def test_manual_clock_refuses_to_go_back(self):
        with pytest.raises(ValueError):
            ManualClock(T0).advance(ms=-1)

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc


class TestJobStore:

    def test_put_get_remove(self):
        store = JobStore()
        store.put(make_job("a"))

        assert store.get("a").id == "a"
        assert "a" in store
        assert len(store) == 1
        assert store.remove("a") is True
        assert store.remove("a") is False
        assert store.get("a") is None

    def test_list_by_status_keeps_insertion_order(self):
        store = JobStore()
        for job_id, status in [("a", JobStatus.PENDING), ("b", JobStatus.DEAD), ("c", JobStatus.PENDING)]:
            store.put(make_job(job_id, status))

        assert [job.id for job in store.list_by_status(JobStatus.PENDING)] == ["a", "c"]
        assert [job.id for job in store.list_by_status(JobStatus.DEAD)] == ["b"]

    def test_replacing_keeps_position(self):
        store = JobStore()
        store.put(make_job("a"))
        store.put(make_job("b"))
        store.put(make_job("a", JobStatus.COMPLETED))

        assert [job.id for job in store.list_all()] == ["a", "b"]

    def test_iteration_survives_mutation(self):
        store = JobStore()
        for job_id in "abc":
            store.put(make_job(job_id))

        for job in store.list_all():
            store.remove(job.id)
            store.put(make_job(job.id + "2"))

        assert len(store) == 3


class TestIdempotencyIndex:

    def test_reserve_bind_release(self):
        index = IdempotencyIndex()
        assert index.reserve("k") is None

        index.bind("k", "job-1")
        assert index.reserve("k") == "job-1"

        assert index.release("k") is True
        assert index.reserve("k") is None

    def test_release_only_by_current_owner(self):
        index = IdempotencyIndex()
        index.bind("k", "job-2")

        assert index.release("k", "job-1") is False
        assert index.owner_of("k") == "job-2"
        assert index.release("k", "job-2") is True
        assert index.release("k") is False

    def test_derived_key_is_order_independent(self):
        a = derive_idempotency_key("MINT_NFT", {"tokenId": "1", "meta": {"x": 1, "y": 2}})
        b = derive_idempotency_key("MINT_NFT", {"meta": {"y": 2, "x": 1}, "tokenId": "1"})
        assert a == b
        assert a.startswith("idem_")
        assert len(a) == len("idem_") + 16

    def test_derived_key_depends_on_type_and_payload(self):
        base = derive_idempotency_key("MINT_NFT", {"tokenId": "1"})
        assert derive_idempotency_key("UPDATE_BATCH", {"tokenId": "1"}) != base
        assert derive_idempotency_key("MINT_NFT", {"tokenId": "2"}) != base

    def test_derived_key_handles_non_json_values(self):
        key = derive_idempotency_key("REGISTER_EVENT", {"at": T0})
        assert key == derive_idempotency_key("REGISTER_EVENT", {"at": T0})


class TestBackoff:

    @pytest.mark.parametrize("attempt,expected", [(1, 100), (2, 200), (3, 400), (4, 800), (5, 1000), (10, 1000)])
    def test_exponential_with_cap(self, attempt, expected):
        assert compute_delay_ms(attempt, 100, 1000, 2) == expected

    def test_multiplier_one_is_constant(self):
        assert [compute_delay_ms(n, 250, 1000, 1) for n in (1, 2, 3)] == [250, 250, 250]

    def test_non_decreasing(self):
        delays = [compute_delay_ms(n, 1000, 300_000, 1.5) for n in range(1, 30)]
        assert delays == sorted(delays)

    def test_attempt_is_one_based(self):
        with pytest.raises(ValueError):
            compute_delay_ms(0, 100, 1000, 2)

    def test_policy_next_attempt_at(self):
        policy = RetryPolicy(max_attempts=3, initial_delay_ms=100, max_delay_ms=1000, multiplier=2)
        assert policy.next_attempt_at(2, T0) == T0 + timedelta(milliseconds=200)
        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)


class TestEventSink:

    def test_handlers_run_in_order_with_snapshot(self):
        sink = EventSink()
        calls = []
        sink.on("completed", lambda job: calls.append(("first", job.id)))
        sink.on("completed", lambda job: calls.append(("second", job.id)))

        sink.emit("completed", make_job("a"))

        assert calls == [("first", "a"), ("second", "a")]

    def test_snapshot_is_frozen_and_detached(self):
        sink = EventSink()
        received = []
        sink.on("retry", received.append)
        job = make_job("a")

        sink.emit("retry", job)
        job.attempts = 2

        assert received[0].attempts == 0
        with pytest.raises(ValidationError):
            received[0].attempts = 5

    def test_failing_handler_is_isolated(self, caplog):
        sink = EventSink()
        calls = []

        def broken(job):
            raise RuntimeError("push service down")

        sink.on("dead", broken)
        sink.on("dead", lambda job: calls.append(job.id))

        with caplog.at_level(logging.ERROR, logger="chain_worker.queue.events"):
            sink.emit("dead", make_job("a"))

        assert calls == ["a"]
        assert sink.error_count == 1
        assert "failed for 'dead'" in caplog.text

    def test_off(self):
        sink = EventSink()
        handler = lambda job: None  # noqa: E731
        sink.on("enqueued", handler)

        assert sink.handler_count("enqueued") == 1
        assert sink.off("enqueued", handler) is True
        assert sink.off("enqueued", handler) is False
        assert sink.handler_count("enqueued") == 0

    def test_unknown_event_name(self):
        sink = EventSink()
        with pytest.raises(ValueError):
            sink.on("jobCompleted", lambda job: None)
        with pytest.raises(ValueError):
            sink.emit("failed", make_job("a"))

    def test_rejects_coroutine_handler(self):
        sink = EventSink()

        async def notify(job):
            pass

        with pytest.raises(TypeError):
            sink.on("completed", notify)
        assert sink.handler_count("completed") == 0

    def test_handler_returning_awaitable_is_reported(self, caplog):
        sink = EventSink()

        async def notify(job):
            pass

        sink.on("completed", lambda job: notify(job))

        with caplog.at_level(logging.ERROR, logger="chain_worker.queue.events"):
            sink.emit("completed", make_job("a"))

        assert sink.error_count == 1
        assert "never awaited" in caplog.text
