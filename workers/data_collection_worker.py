import asyncio
import heapq
import itertools
import time
from datetime import datetime, timedelta, timezone

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from db.repository import repository
from db.s3_sync import s3_sync
from services.analytics_service import AnalyticsService
from services.candidate_service import candidate_service
from services.monitoring_service import DataCollectionMonitor
from services.notification_service import notification_service
from services.regional_service import regional_service
from services.social_data_collector import social_data_collector
from services.web_scraping_service import web_scraping_service
from utils.logger import logger
from config import (
    CLEANUP_HOUR, DIGEST_HOUR, TIMEZONE, RETENTION_DAYS, KURDISTAN_PASSES,
    GENERAL_INTERVAL_MINUTES, DEEP_INTERVAL_MINUTES, SCRAPING_INTERVAL_MINUTES,
    INFLUENCE_REFRESH_MINUTES, KURDISTAN_INTERVAL_MINUTES, REPORT_INTERVAL_MINUTES,
    MAX_CONCURRENT_REGIONS, MAX_PENDING_JOBS
)

# Kurdistan priority jobs sort ahead of every regional tier
KURDISTAN_PRIORITY_ORDER = 0


class RegionJob:
    def __init__(self, name, regions, priority_order, cycle_type='regional', passes=1):
        self.name = name
        self.regions = list(regions)
        self.priority_order = priority_order
        self.cycle_type = cycle_type
        self.passes = passes
        self.seq = None
        self.cancelled = False

    def __repr__(self):
        return f"RegionJob({self.name!r}, order={self.priority_order}, seq={self.seq})"


class RegionJobQueue:
    """
    Pending regional work ordered by (priority_order, enqueue sequence), so higher
    tiers always dequeue first and jobs of one tier leave in FIFO order.

    At most one job per name is pending; a second one is coalesced into it. Once
    `max_pending` jobs are waiting, a new job evicts the lowest-priority pending job
    if it outranks it, and is dropped otherwise.
    """
    def __init__(self, max_pending=MAX_PENDING_JOBS):
        self.max_pending = max_pending
        self._heap = []
        self._pending = {}
        self._seq = itertools.count()
        self.coalesced = 0
        self.dropped = 0

    def __len__(self):
        return len(self._pending)

    def __contains__(self, name):
        return name in self._pending

    def _push(self, job):
        job.seq = next(self._seq)
        heapq.heappush(self._heap, (job.priority_order, job.seq, job))
        self._pending[job.name] = job

    def _lowest(self):
        return max(self._pending.values(), key=lambda job: (job.priority_order, job.seq))

    def put(self, job):
        """
        Returns "queued", "coalesced", "replaced" or "dropped".
        """
        if job.name in self._pending:
            self.coalesced += 1
            return 'coalesced'

        if len(self._pending) < self.max_pending:
            self._push(job)
            return 'queued'

        lowest = self._lowest()
        if job.priority_order >= lowest.priority_order:
            self.dropped += 1
            logger.warn(f"Queue full ({self.max_pending}); dropping {job.name}")
            return 'dropped'

        lowest.cancelled = True
        del self._pending[lowest.name]
        self.dropped += 1
        logger.warn(f"Queue full ({self.max_pending}); evicting {lowest.name} for {job.name}")
        self._push(job)
        return 'replaced'

    def get_nowait(self):
        while self._heap:
            _, _, job = heapq.heappop(self._heap)
            if job.cancelled:
                continue
            del self._pending[job.name]
            return job
        return None

    def pending_names(self):
        return [job.name for _, _, job in sorted(self._heap) if not job.cancelled]

    def clear(self):
        for job in self._pending.values():
            job.cancelled = True
        self._heap = []
        self._pending = {}


class DataCollectionWorker:
    def __init__(self, collector=None, scraper=None, max_concurrent=MAX_CONCURRENT_REGIONS,
                 max_pending=MAX_PENDING_JOBS):
        self.collector = collector or social_data_collector
        self.scraper = scraper or web_scraping_service
        self.max_concurrent = max_concurrent
        self.queue = RegionJobQueue(max_pending)
        self.analytics = AnalyticsService(queue_size_fn=lambda: len(self.queue))
        self.monitor = DataCollectionMonitor(is_running_fn=lambda: self.is_running)
        self.scheduler = None
        self._running = False
        self._runners = []
        self._active = 0
        self._condition = None

    @property
    def is_running(self):
        return self._running

    @property
    def active_jobs(self):
        return self._active

    async def _timed(self, name, job_fn):
        """
        Runs one job, logging its start, duration and result. Errors are logged
        and swallowed so one failing job never stops the scheduler.
        """
        started = time.monotonic()
        logger.log(f"▶️  {name} started")
        try:
            result = await job_fn()
        except Exception as e:
            logger.error(f"❌ {name} failed after {time.monotonic() - started:.1f}s: {e}")
            return None
        logger.log(f"⏹️  {name} finished in {time.monotonic() - started:.1f}s")
        return result

    # Queue

    async def enqueue(self, job):
        outcome = self.queue.put(job)
        logger.debug(f"{job.name}: {outcome} ({len(self.queue)} pending)")
        if self._condition is not None and outcome in ('queued', 'replaced'):
            async with self._condition:
                self._condition.notify()
        return outcome

    async def enqueue_tier(self, entry):
        job = RegionJob(
            name=entry['priority'].value,
            regions=entry['regions'],
            priority_order=entry['priority_order']
        )
        return await self.enqueue(job)

    async def enqueue_kurdistan_priority(self):
        job = RegionJob(
            name='kurdistan',
            regions=self.collector.kurdistan_regions,
            priority_order=KURDISTAN_PRIORITY_ORDER,
            cycle_type='kurdistan',
            passes=KURDISTAN_PASSES
        )
        return await self.enqueue(job)

    async def run_job(self, job):
        self._active += 1
        try:
            return await self._timed(
                f"{job.cycle_type} collection [{job.name}]",
                lambda: self.collector.collect_regions(job.regions, cycle_type=job.cycle_type, passes=job.passes)
            )
        finally:
            self._active -= 1

    async def _runner(self, index):
        while self._running:
            async with self._condition:
                await self._condition.wait_for(lambda: len(self.queue) > 0 or not self._running)
                if not self._running:
                    break
                job = self.queue.get_nowait()
            if job is not None:
                await self.run_job(job)
        logger.debug(f"Queue runner {index} stopped")

    # Scheduled jobs

    async def general_collection(self):
        return await self._timed('General collection', self.collector.collect_from_apis)

    async def deep_collection(self):
        async def deep():
            priority = await self.collector.collect_by_priority()
            scraping = await self.scraper.start_scraping()
            return {"priority": priority, "scraping": scraping}
        return await self._timed('Deep collection', deep)

    async def web_scraping(self):
        return await self._timed('Web scraping', self.scraper.start_scraping)

    async def cleanup_expired_data(self):
        """
        Deletes mentions past retention and uploads the snapshot. Errors propagate.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=RETENTION_DAYS)
        social, kurdistan = repository.delete_mentions_before(cutoff)
        logger.log(f"🧹 Deleted {social} mentions and {kurdistan} Kurdistan mentions older than {RETENTION_DAYS} days")
        await s3_sync.upload_changes()
        return {"social": social, "kurdistan": kurdistan}

    async def perform_data_cleanup(self):
        return await self._timed('Data cleanup', self.cleanup_expired_data)

    async def refresh_influence(self):
        async def refresh():
            updated = candidate_service.refresh_all_influence()
            alerted = notification_service.check_for_trending_candidates()
            notification_service.check_system_health()
            return {"updated": updated, "alerted": alerted}
        return await self._timed('Influence refresh', refresh)

    async def send_digest(self):
        async def digest():
            return notification_service.send_daily_digest(self.analytics.get_dashboard_metrics())
        return await self._timed('Daily digest', digest)

    async def monitoring_report(self):
        async def report():
            return self.monitor.generate_report()
        return await self._timed('Monitoring report', report)

    def schedule_jobs(self):
        local_tz = pytz.timezone(TIMEZONE)
        self.scheduler = AsyncIOScheduler(timezone=local_tz)
        job_defaults = {"max_instances": 1, "coalesce": True}

        for entry in regional_service.get_collection_schedule():
            self.scheduler.add_job(
                self.enqueue_tier, 'interval', seconds=entry['interval_seconds'], args=[entry],
                id=f"tier_{entry['priority_order']}", **job_defaults
            )
            logger.log(f"   {entry['region']}: every {entry['interval_seconds']}s ({entry['frequency']}x)")

        self.scheduler.add_job(self.enqueue_kurdistan_priority, 'interval', minutes=KURDISTAN_INTERVAL_MINUTES,
                               id='kurdistan_priority', **job_defaults)
        self.scheduler.add_job(self.general_collection, 'interval', minutes=GENERAL_INTERVAL_MINUTES,
                               id='general_collection', **job_defaults)
        self.scheduler.add_job(self.deep_collection, 'interval', minutes=DEEP_INTERVAL_MINUTES,
                               id='deep_collection', **job_defaults)
        self.scheduler.add_job(self.web_scraping, 'interval', minutes=SCRAPING_INTERVAL_MINUTES,
                               id='web_scraping', **job_defaults)
        self.scheduler.add_job(self.refresh_influence, 'interval', minutes=INFLUENCE_REFRESH_MINUTES,
                               id='influence_refresh', **job_defaults)
        self.scheduler.add_job(self.monitoring_report, 'interval', minutes=REPORT_INTERVAL_MINUTES,
                               id='monitoring_report', **job_defaults)
        self.scheduler.add_job(self.perform_data_cleanup, 'cron', hour=CLEANUP_HOUR, minute=0,
                               timezone=local_tz, id='data_cleanup', **job_defaults)
        self.scheduler.add_job(self.send_digest, 'cron', hour=DIGEST_HOUR, minute=0,
                               timezone=local_tz, id='daily_digest', **job_defaults)
        return self.scheduler

    async def perform_initial_collection(self):
        logger.log("🚀 Performing initial data collection...")
        await self.enqueue_kurdistan_priority()
        await self.general_collection()
        await self.web_scraping()

    async def start(self, initial_collection=True):
        if self._running:
            logger.log("Data collection worker is already running")
            return False

        logger.log("🚀 Starting data collection worker...")
        self._running = True
        self._condition = asyncio.Condition()
        self.schedule_jobs()
        self.scheduler.start()
        self._runners = [asyncio.create_task(self._runner(i)) for i in range(self.max_concurrent)]

        if initial_collection:
            await self.perform_initial_collection()
        logger.success("✅ Data collection worker started")
        return True

    async def stop(self):
        if not self._running:
            return False

        logger.log("🛑 Stopping data collection worker...")
        self._running = False
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
        dropped = len(self.queue)
        self.queue.clear()
        async with self._condition:
            self._condition.notify_all()
        # Jobs already running are allowed to finish
        await asyncio.gather(*self._runners, return_exceptions=True)
        self._runners = []
        logger.log(f"Data collection worker stopped ({dropped} pending jobs discarded)")
        return True


data_collection_worker = DataCollectionWorker()
