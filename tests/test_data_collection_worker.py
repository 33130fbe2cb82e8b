import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.regional_service import regional_service
from workers.data_collection_worker import (
    KURDISTAN_PRIORITY_ORDER, DataCollectionWorker, RegionJob, RegionJobQueue, notification_service
)


def job(name, order):
    return RegionJob(name, [name.title()], order)


class TestRegionJobQueue:

    def test_dequeues_by_priority_then_fifo(self):
        queue = RegionJobQueue(max_pending=10)
        for name, order in [('other', 7), ('baghdad', 3), ('erbil', 2), ('basra', 3)]:
            queue.put(job(name, order))
        queue.put(RegionJob('kurdistan', ['Erbil'], KURDISTAN_PRIORITY_ORDER, cycle_type='kurdistan'))

        assert queue.pending_names() == ['kurdistan', 'erbil', 'baghdad', 'basra', 'other']
        assert [queue.get_nowait().name for _ in range(5)] == ['kurdistan', 'erbil', 'baghdad', 'basra', 'other']
        assert queue.get_nowait() is None

    def test_same_name_is_coalesced(self):
        queue = RegionJobQueue(max_pending=10)
        assert queue.put(job('erbil', 2)) == 'queued'
        assert queue.put(job('erbil', 2)) == 'coalesced'
        assert len(queue) == 1
        assert queue.coalesced == 1
        assert 'erbil' in queue

    def test_full_queue_evicts_lower_priority(self):
        queue = RegionJobQueue(max_pending=2)
        queue.put(job('baghdad', 3))
        queue.put(job('other', 7))

        assert queue.put(job('erbil', 2)) == 'replaced'
        assert queue.pending_names() == ['erbil', 'baghdad']
        assert 'other' not in queue
        assert queue.dropped == 1

    def test_full_queue_drops_lower_or_equal_job(self):
        queue = RegionJobQueue(max_pending=2)
        queue.put(job('erbil', 2))
        queue.put(job('baghdad', 3))

        assert queue.put(job('basra', 3)) == 'dropped'
        assert queue.put(job('other', 7)) == 'dropped'
        assert queue.pending_names() == ['erbil', 'baghdad']

    def test_clear(self):
        queue = RegionJobQueue()
        queue.put(job('erbil', 2))
        queue.clear()
        assert len(queue) == 0
        assert queue.get_nowait() is None


@pytest.fixture
def collector():
    collector = MagicMock()
    collector.kurdistan_regions = ['erbil', 'sulaymaniyah', 'duhok', 'halabja']
    collector.collect_regions = AsyncMock(return_value={"total": 0})
    collector.collect_from_apis = AsyncMock(return_value={"total": 0})
    collector.collect_by_priority = AsyncMock(return_value={"total": 0})
    return collector


@pytest.fixture
def scraper():
    scraper = MagicMock()
    scraper.start_scraping = AsyncMock(return_value={"stored": 0})
    return scraper


@pytest.fixture
def worker(collector, scraper):
    return DataCollectionWorker(collector=collector, scraper=scraper, max_concurrent=2, max_pending=20)


async def wait_until(predicate, timeout=2):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.005)


async def test_runners_respect_concurrency_and_order(worker, collector):
    running = 0
    peak = 0
    started = []

    async def fake_collect(regions, cycle_type='regional', passes=1):
        nonlocal running, peak
        started.append(regions[0])
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return {"total": 0}

    collector.collect_regions.side_effect = fake_collect
    for entry in reversed(regional_service.get_collection_schedule()):
        await worker.enqueue_tier(entry)
    await worker.enqueue_kurdistan_priority()

    await worker.start(initial_collection=False)
    try:
        await wait_until(lambda: len(started) == 8 and worker.active_jobs == 0)
    finally:
        await worker.stop()

    assert peak == 2
    assert started[:3] == ['erbil', 'Sulaymaniyah', 'Erbil']
    assert len(worker.queue) == 0


async def test_enqueue_tier_names_job_after_tier(worker):
    entry = regional_service.get_collection_schedule()[0]
    assert await worker.enqueue_tier(entry) == 'queued'
    assert await worker.enqueue_tier(entry) == 'coalesced'
    assert worker.queue.pending_names() == ['SULAYMANIYAH']


async def test_kurdistan_job_runs_every_pass(worker, collector):
    await worker.start(initial_collection=False)
    try:
        await worker.enqueue_kurdistan_priority()
        await wait_until(lambda: collector.collect_regions.await_count == 1)
    finally:
        await worker.stop()
    collector.collect_regions.assert_awaited_once_with(
        ['erbil', 'sulaymaniyah', 'duhok', 'halabja'], cycle_type='kurdistan', passes=3
    )


async def test_failing_job_does_not_stop_runners(worker, collector):
    collector.collect_regions.side_effect = RuntimeError('api down')
    await worker.start(initial_collection=False)
    try:
        await worker.enqueue(job('erbil', 2))
        await worker.enqueue(job('baghdad', 3))
        await wait_until(lambda: collector.collect_regions.await_count == 2)

        collector.collect_regions.side_effect = None
        await worker.enqueue(job('basra', 3))
        await wait_until(lambda: collector.collect_regions.await_count == 3)
        await wait_until(lambda: worker.active_jobs == 0)
        assert all(not runner.done() for runner in worker._runners)
    finally:
        await worker.stop()


def test_schedule_jobs_registers_every_job(worker):
    scheduler = worker.schedule_jobs()
    ids = {scheduled.id for scheduled in scheduler.get_jobs()}
    assert ids == {f"tier_{order}" for order in range(1, 8)} | {
        'kurdistan_priority', 'general_collection', 'deep_collection', 'web_scraping',
        'influence_refresh', 'monitoring_report', 'data_cleanup', 'daily_digest'
    }
    assert scheduler.get_job('tier_1').trigger.interval == timedelta(seconds=120)
    assert scheduler.get_job('tier_7').trigger.interval == timedelta(seconds=1440)


async def test_start_and_stop_are_idempotent(worker, collector):
    collected = asyncio.Event()

    async def fake_collect(regions, cycle_type='regional', passes=1):
        collected.set()
        return {"total": 0}

    collector.collect_regions.side_effect = fake_collect

    assert await worker.start(initial_collection=False)
    assert worker.is_running
    assert not await worker.start(initial_collection=False)

    await worker.enqueue(job('erbil', 2))
    await asyncio.wait_for(collected.wait(), timeout=2)

    assert await worker.stop()
    assert not worker.is_running
    assert not await worker.stop()


async def test_stop_discards_pending_jobs(worker):
    await worker.start(initial_collection=False)
    worker.queue.put(job('erbil', 2))
    await worker.stop()
    assert len(worker.queue) == 0


async def test_initial_collection_queues_kurdistan_first(worker, collector, scraper):
    await worker.perform_initial_collection()
    assert worker.queue.pending_names() == ['kurdistan']
    collector.collect_from_apis.assert_awaited_once()
    scraper.start_scraping.assert_awaited_once()


async def test_deep_collection_runs_plan_and_scraping(worker, collector, scraper):
    result = await worker.deep_collection()
    assert set(result) == {'priority', 'scraping'}
    collector.collect_by_priority.assert_awaited_once()
    scraper.start_scraping.assert_awaited_once()


async def test_cleanup_removes_old_mentions_and_uploads(worker, repo, make_mention):
    repo.upsert_mention(make_mention(post_id='old', detected_at=datetime.now(timezone.utc) - timedelta(days=31)))
    repo.upsert_mention(make_mention(post_id='new'))

    with patch('workers.data_collection_worker.s3_sync.upload_changes', new=AsyncMock(return_value=False)) as upload:
        result = await worker.perform_data_cleanup()

    assert result == {"social": 1, "kurdistan": 0}
    assert repo.count_mentions() == 1
    upload.assert_awaited_once()


async def test_scheduled_cleanup_logs_failure_cli_cleanup_raises(worker):
    with patch('workers.data_collection_worker.repository.delete_mentions_before',
               side_effect=sqlite3.OperationalError('database is locked')):
        assert await worker.perform_data_cleanup() is None
        with pytest.raises(sqlite3.OperationalError):
            await worker.cleanup_expired_data()


async def test_refresh_influence_checks_trending_and_health(worker, repo):
    candidate = repo.upsert_candidate({"name": 'Rewaz Faiq'})
    with patch.object(notification_service, 'check_for_trending_candidates', return_value=[]) as trending, \
            patch.object(notification_service, 'check_system_health', return_value=False) as health:
        result = await worker.refresh_influence()
    assert result == {"updated": {candidate['id']: 0}, "alerted": []}
    trending.assert_called_once()
    health.assert_called_once()


async def test_digest_uses_dashboard_metrics(worker):
    with patch.object(notification_service, 'send_daily_digest', return_value=True) as digest:
        assert await worker.send_digest()
    metrics = digest.call_args.args[0]
    assert metrics['collection_status']['queue_size'] == 0
