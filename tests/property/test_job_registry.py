"""Property-based tests for the job registry.

Covers job lifecycle transitions, the progress formula, id uniqueness and
the stale-job reaper.
"""

import asyncio
import math
from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from carousel_relay.models.job import utcnow
from carousel_relay.services.job_registry import (
    InMemoryJobStore,
    JobRegistry,
    compute_progress,
    generate_job_id,
)
from carousel_relay.utils.errors import InvalidRequestError


# ==================== Scenarios ====================


class TestJobLifecycle:
    """Create, progress, complete and fail transitions."""

    def test_progress_update_flips_pending_to_processing(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(5)

        assert job.status == "pending"
        assert job.progress == 0
        assert job.details.media_ids == []

        updated = registry.update_job_progress(job.id, 2, "m1")

        assert updated is not None
        assert updated.progress == 40
        assert updated.details.media_ids == ["m1"]
        assert updated.status == "processing"

    def test_complete_forces_progress_to_100(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(3)

        assert registry.update_job_progress(job.id, 1, "m1").progress == 33
        assert registry.update_job_progress(job.id, 2, "m2").progress == 67

        completed = registry.complete_job(
            job.id, "post1", {"post_url": "https://www.tiktok.com/@c/photo/1", "media_count": 2}
        )

        assert completed.status == "completed"
        assert completed.progress == 100
        assert completed.details.media_ids == ["m1", "m2"]
        assert completed.details.tiktok_post_id == "post1"
        assert completed.details.model_dump()["post_url"] == "https://www.tiktok.com/@c/photo/1"

    def test_fail_preserves_recorded_work(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(5)
        registry.update_job_progress(job.id, 2, "m1")

        failed = registry.fail_job(job.id, "network error")

        assert failed.status == "failed"
        assert failed.details.processed_images == 2
        assert failed.details.media_ids == ["m1"]
        assert failed.details.error == "network error"
        assert failed.progress == 40

    def test_zero_total_gives_nan_progress(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(0)

        updated = registry.update_job_progress(job.id, 0)

        assert math.isnan(updated.progress)

    def test_unknown_ids_miss(self) -> None:
        registry = JobRegistry()

        assert registry.get_job("job_missing") is None
        assert registry.update_job("job_missing", status="failed") is None
        assert registry.update_job_progress("job_missing", 1) is None
        assert registry.complete_job("job_missing", "post") is None
        assert registry.fail_job("job_missing", "boom") is None
        assert registry.cancel_job("job_missing") is None

    def test_update_job_merges_and_touches_updated_at(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(2)

        updated = registry.update_job(job.id, status="processing", progress=10)

        assert updated.status == "processing"
        assert updated.progress == 10
        assert updated.updated_at >= job.updated_at
        assert registry.get_job(job.id).status == "processing"

    def test_update_job_can_overwrite_terminal_status(self) -> None:
        """Direct field updates bypass the progress path's status guard."""
        registry = JobRegistry()
        job = registry.create_job(2)
        registry.fail_job(job.id, "boom")

        assert registry.update_job(job.id, status="processing").status == "processing"

    def test_cancel_marks_active_job_failed(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(3)
        registry.update_job_progress(job.id, 1, "m1")

        cancelled = registry.cancel_job(job.id)

        assert cancelled.status == "failed"
        assert cancelled.details.error == "Job cancelled by user"
        assert cancelled.details.media_ids == ["m1"]

    def test_cancel_rejects_finished_jobs(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(1)
        registry.complete_job(job.id, "post1")

        with pytest.raises(InvalidRequestError, match="Cannot cancel job with status: completed"):
            registry.cancel_job(job.id)

    def test_complete_after_cancel_overwrites_cancellation(self) -> None:
        registry = JobRegistry()
        job = registry.create_job(1)
        registry.cancel_job(job.id)

        completed = registry.complete_job(job.id, "post1")

        assert completed.status == "completed"
        assert completed.progress == 100

    def test_list_jobs_newest_first_with_filter(self) -> None:
        registry = JobRegistry()
        first = registry.create_job(1)
        second = registry.create_job(1)
        registry.update_job(first.id, created_at=utcnow() - timedelta(minutes=1))
        registry.fail_job(second.id, "boom")

        assert [j.id for j in registry.list_jobs()] == [second.id, first.id]
        assert [j.id for j in registry.list_jobs("failed")] == [second.id]
        assert [j.id for j in registry.list_jobs("pending")] == [first.id]
        assert registry.count_by_status() == {
            "pending": 1,
            "processing": 0,
            "completed": 0,
            "failed": 1,
        }


# ==================== Properties ====================


class TestProgressFormula:
    """progress == round-half-up(processed / total * 100) after every update."""

    @settings(max_examples=100)
    @given(
        total=st.integers(min_value=1, max_value=100),
        data=st.data(),
    )
    def test_progress_matches_formula(self, total: int, data: st.DataObject) -> None:
        processed = data.draw(st.integers(min_value=0, max_value=total))
        registry = JobRegistry()
        job = registry.create_job(total)

        updated = registry.update_job_progress(job.id, processed)

        assert updated.progress == math.floor(processed / total * 100 + 0.5)
        assert updated.details.processed_images == processed

    @pytest.mark.parametrize(
        "processed,total,expected",
        [(1, 8, 13), (1, 200, 1), (3, 8, 38), (1, 3, 33), (2, 3, 67)],
    )
    def test_halves_round_up(self, processed: int, total: int, expected: int) -> None:
        assert compute_progress(processed, total) == expected

    @settings(max_examples=50)
    @given(
        total=st.integers(min_value=1, max_value=20),
        over=st.integers(min_value=1, max_value=20),
    )
    def test_progress_is_not_clamped(self, total: int, over: int) -> None:
        assert compute_progress(total + over, total) > 100
        assert compute_progress(-over, total) <= 0

    def test_zero_total_with_processed_images_is_infinite(self) -> None:
        assert compute_progress(1, 0) == math.inf
        assert compute_progress(-1, 0) == -math.inf

    @settings(max_examples=100)
    @given(total=st.integers(min_value=1, max_value=10))
    def test_sequential_updates_are_monotonic(self, total: int) -> None:
        registry = JobRegistry()
        job = registry.create_job(total)

        previous = -1.0
        for processed in range(1, total + 1):
            progress = registry.update_job_progress(job.id, processed, f"m{processed}").progress
            assert progress >= previous
            previous = progress

        assert previous == 100
        assert registry.get_job(job.id).details.media_ids == [f"m{i}" for i in range(1, total + 1)]


class TestJobIdUniqueness:
    """All generated job ids are pairwise distinct."""

    @settings(max_examples=20)
    @given(count=st.integers(min_value=2, max_value=200))
    def test_created_job_ids_are_distinct(self, count: int) -> None:
        registry = JobRegistry()
        ids = [registry.create_job(1).id for _ in range(count)]

        assert len(set(ids)) == count
        assert len(registry.store) == count

    def test_job_id_format(self) -> None:
        job_id = generate_job_id()
        prefix, millis, suffix = job_id.split("_")

        assert prefix == "job"
        assert millis.isdigit()
        assert len(suffix) == 9
        assert suffix.isalnum() and suffix == suffix.lower()


class TestNoStatusRegression:
    """Progress updates never move a finished job back to an active state."""

    @settings(max_examples=100)
    @given(
        finish=st.sampled_from(["completed", "failed"]),
        processed=st.integers(min_value=0, max_value=10),
    )
    def test_progress_after_finish_keeps_status(self, finish: str, processed: int) -> None:
        registry = JobRegistry()
        job = registry.create_job(10)
        if finish == "completed":
            registry.complete_job(job.id, "post1")
        else:
            registry.fail_job(job.id, "boom")

        updated = registry.update_job_progress(job.id, processed, "late")

        assert updated.status == finish


# ==================== Reaper ====================


class TestReaper:
    """The reaper only touches expired terminal jobs and stale active jobs."""

    def test_cleanup_evicts_and_times_out_only_matching_jobs(self) -> None:
        registry = JobRegistry(timeout_seconds=300, retention_hours=24)
        now = utcnow()

        old_done = registry.create_job(1)
        registry.complete_job(old_done.id, "post1")
        registry.update_job(old_done.id, created_at=now - timedelta(hours=25))

        recent_failed = registry.create_job(1)
        registry.fail_job(recent_failed.id, "boom")
        registry.update_job(recent_failed.id, created_at=now - timedelta(hours=1))

        stale_active = registry.create_job(2)
        registry.update_job_progress(stale_active.id, 1, "m1")
        registry.update_job(stale_active.id, status="processing")
        registry.get_job(stale_active.id).updated_at = now - timedelta(minutes=10)

        old_but_busy = registry.create_job(2)
        registry.update_job(old_but_busy.id, created_at=now - timedelta(hours=30))

        evicted, timed_out = registry.cleanup_jobs(now=now)

        assert (evicted, timed_out) == (1, 1)
        assert registry.get_job(old_done.id) is None
        assert registry.get_job(recent_failed.id).details.error == "boom"

        stale = registry.get_job(stale_active.id)
        assert stale.status == "failed"
        assert stale.details.error == "Job timed out"
        assert stale.details.media_ids == ["m1"]

        busy = registry.get_job(old_but_busy.id)
        assert busy.status == "pending"

    @settings(max_examples=50)
    @given(idle_seconds=st.integers(min_value=0, max_value=299))
    def test_recently_updated_active_jobs_are_untouched(self, idle_seconds: int) -> None:
        registry = JobRegistry(timeout_seconds=300)
        job = registry.create_job(3)
        now = job.updated_at + timedelta(seconds=idle_seconds)

        assert registry.cleanup_jobs(now=now) == (0, 0)
        assert registry.get_job(job.id).status == "pending"

    @pytest.mark.asyncio
    async def test_reaper_task_sweeps_periodically(self) -> None:
        registry = JobRegistry(store=InMemoryJobStore(), timeout_seconds=0, sweep_interval_seconds=0.01)
        job = registry.create_job(1)
        registry.get_job(job.id).updated_at = utcnow() - timedelta(seconds=1)

        registry.start_reaper()
        try:
            for _ in range(100):
                if registry.get_job(job.id).status == "failed":
                    break
                await asyncio.sleep(0.01)
        finally:
            await registry.stop_reaper()

        assert registry.get_job(job.id).details.error == "Job timed out"
        assert registry._reaper_task is None
