import asyncio
import time
from collections import Counter
from datetime import datetime, timezone

from api.social_media_api import social_media_api
from db.repository import repository
from services.candidate_service import candidate_service
from services.deduplication_service import DeduplicationService, compute_dedup_key
from services.language_service import KURDISH_DIALECTS, language_service
from services.regional_service import GOVERNORATES, regional_service
from utils.logger import logger
from config import KURDISTAN_PASSES

KURDISTAN_PASS_DELAY_S = 2
KEYWORDS_PER_QUERY = 5


class CycleStats:
    """
    Counters for one collection cycle, persisted to collection_stats when it ends.
    """
    def __init__(self, cycle_type, region=None):
        self.cycle_type = cycle_type
        self.region = region
        self.start_time = datetime.now(timezone.utc)
        self._started = time.monotonic()
        self.total = 0
        self.new = 0
        self.updated = 0
        self.kurdistan = 0
        self.failed = 0
        self.platforms = Counter()

    def count(self, mention, status, is_kurdistan=False):
        self.total += 1
        self.platforms[mention.get('platform') or 'unknown'] += 1
        if status == 'new':
            self.new += 1
        elif status == 'updated':
            self.updated += 1
        else:
            self.failed += 1
        if is_kurdistan and status != 'failed':
            self.kurdistan += 1

    @property
    def processed(self):
        return self.new + self.updated

    def as_dict(self):
        return {
            "cycle_type": self.cycle_type,
            "region": self.region,
            "start_time": self.start_time,
            "end_time": datetime.now(timezone.utc),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "total": self.total,
            "new": self.new,
            "updated": self.updated,
            "kurdistan": self.kurdistan,
            "processed": self.processed,
            "failed": self.failed,
            "platforms": dict(self.platforms)
        }


class SocialDataCollector:
    def __init__(self, api=None):
        self.api = api or social_media_api
        self.priority_regions = GOVERNORATES
        self.kurdistan_regions = [name for name, cfg in GOVERNORATES.items() if cfg['type'] == 'kurdistan']

    def get_region_priority(self, region_name):
        return self.priority_regions.get(region_name, {}).get('priority', 999)

    def get_region_type(self, region_name):
        return self.priority_regions.get(region_name, {}).get('type', 'other')

    def is_kurdistan_priority(self, region_name):
        return region_name in self.kurdistan_regions

    def build_collection_plan(self, kurdistan_passes=KURDISTAN_PASSES):
        """
        Governorates ordered by priority then name. Kurdistan governorates get
        `kurdistan_passes` passes, the rest one.
        """
        ordered = sorted(self.priority_regions.items(), key=lambda item: (item[1]['priority'], item[0]))
        return [
            {
                "region": name,
                "priority": cfg['priority'],
                "type": cfg['type'],
                "languages": list(cfg['languages']),
                "passes": kurdistan_passes if cfg['type'] == 'kurdistan' else 1
            }
            for name, cfg in ordered
        ]

    def _search_languages(self, languages, region_type):
        search_languages = list(languages)
        if region_type == 'kurdistan':
            for dialect in KURDISH_DIALECTS:
                if dialect.value not in search_languages:
                    search_languages.append(dialect.value)
        return search_languages

    async def process_mention(self, mention, stats=None):
        """
        Classifies and stores one mention. Returns "new", "updated" or "failed";
        failures are logged and counted, never raised.
        """
        is_kurdistan = False
        try:
            content = mention.get('content') or ''
            language = mention.get('language') or language_service.detect_language(content)
            dialect = language if language_service.is_kurdish(language) else None
            region = mention.get('region') or self.api.extract_region(content) or 'iraq'
            is_kurdistan = regional_service.is_kurdistan_region(region)

            sentiment = await language_service.analyze_sentiment_ai(content, language)
            candidates = candidate_service.extract_candidate_mentions(content)

            record = dict(mention)
            record.update({
                "dedup_key": compute_dedup_key(mention),
                "language": language,
                "dialect": dialect,
                "region": region,
                "sentiment": sentiment['sentiment'],
                "sentiment_score": sentiment['score'],
                "candidate_id": candidates[0]['id'] if candidates else None
            })

            status, mention_id = await DeduplicationService.record_mention(record)

            if is_kurdistan:
                governorate = region.lower().replace(' ', '_')
                kurdistan_record = dict(record)
                kurdistan_record.update({
                    "governorate": governorate,
                    "dialect": dialect or (language_service.detect_kurdish_dialect(content).value
                                           if language_service.is_kurdish_script(content) else None),
                    "priority_level": self.get_region_priority(governorate) if governorate in self.priority_regions else 1
                })
                repository.upsert_kurdistan_mention(kurdistan_record, mention_id)

            for candidate in candidates:
                candidate_service.update_influence_score(candidate['id'])

            logger.debug(f"{status} {record['platform']} mention {record['dedup_key']} ({language}, {region})")
        except Exception as e:
            logger.error(f"Failed to process {mention.get('platform')} mention {mention.get('post_id') or mention.get('url')}: {e}")
            status = 'failed'

        if stats is not None:
            stats.count(mention, status, is_kurdistan)
        return status

    async def collect_regional_data(self, region_name, languages, region_type, stats=None):
        """
        Searches every configured platform with the region's keywords in each of its
        languages and processes the results. Returns the number of mentions seen.
        """
        platforms = self.api.configured_platforms()
        if not platforms:
            logger.warn(f"No social platforms configured. Skipping collection for {region_name}.")
            return 0

        logger.log(f"🔍 Collecting data for {region_name} ({', '.join(languages)})")
        seen = 0
        for language in self._search_languages(languages, region_type):
            keywords = language_service.get_keywords(language)[:KEYWORDS_PER_QUERY]
            if not keywords:
                continue
            query = ' OR '.join(keywords)
            for platform in platforms:
                try:
                    mentions = await self.api.search(platform, query, region=region_name)
                except Exception as e:
                    logger.error(f"{platform} search failed for {region_name} ({language}): {e}")
                    continue
                for mention in mentions:
                    await self.process_mention(mention, stats)
                seen += len(mentions)
        return seen

    def _finish_cycle(self, stats):
        summary = stats.as_dict()
        try:
            repository.record_collection_stats(summary)
        except Exception as e:
            logger.error(f"Failed to record collection stats for {stats.cycle_type}: {e}")
        logger.success(
            f"{stats.cycle_type} cycle done in {summary['duration_ms']}ms: {stats.total} mentions "
            f"({stats.new} new, {stats.kurdistan} Kurdistan, {stats.failed} failed)"
        )
        return summary

    async def collect_by_priority(self, kurdistan_passes=KURDISTAN_PASSES):
        """
        Runs the full collection plan in priority order.
        """
        stats = CycleStats('priority')
        plan = self.build_collection_plan(kurdistan_passes)

        logger.log("🎯 Starting priority-based collection in this order:")
        for entry in plan:
            logger.log(f"   Priority {entry['priority']}: {entry['region'].upper()} ({entry['type']}) - {', '.join(entry['languages'])}")

        for entry in plan:
            for _ in range(entry['passes']):
                await self.collect_regional_data(entry['region'], entry['languages'], entry['type'], stats)
            logger.log(f"✅ Completed Priority {entry['priority']} collection: {entry['region']}")

        return self._finish_cycle(stats)

    async def collect_regions(self, region_names, cycle_type='regional', passes=1):
        """
        Collects the named governorates. Names that are not governorates are skipped.
        """
        stats = CycleStats(cycle_type, region=', '.join(region_names))
        for _ in range(passes):
            for name in region_names:
                key = name.strip().lower().replace(' ', '_')
                cfg = self.priority_regions.get(key)
                if not cfg:
                    continue
                await self.collect_regional_data(key, cfg['languages'], cfg['type'], stats)
        return self._finish_cycle(stats)

    async def collect_kurdistan_priority(self, passes=KURDISTAN_PASSES, pass_delay_s=KURDISTAN_PASS_DELAY_S):
        logger.log("🟢 Starting Kurdistan priority collection...")
        stats = CycleStats('kurdistan', region='kurdistan')
        for i in range(passes):
            for name in self.kurdistan_regions:
                cfg = self.priority_regions[name]
                await self.collect_regional_data(name, cfg['languages'], cfg['type'], stats)
            if i < passes - 1 and pass_delay_s:
                await asyncio.sleep(pass_delay_s)
        return self._finish_cycle(stats)

    async def collect_from_apis(self):
        """
        Default-query pass over every platform, processing each result.
        """
        stats = CycleStats('api')
        collected = await self.api.collect_from_all_apis()
        for mentions in collected.values():
            for mention in mentions:
                await self.process_mention(mention, stats)
        return self._finish_cycle(stats)


social_data_collector = SocialDataCollector()
