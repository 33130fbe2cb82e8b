from datetime import datetime, timedelta, timezone

import pytz

from api.social_media_api import social_media_api
from db.repository import repository
from services.candidate_service import candidate_service
from services.regional_service import GOVERNORATES
from utils.logger import logger
from config import TIMEZONE

LANGUAGES = ('sorani', 'badini', 'kurmanji', 'arabic', 'english')
DIALECTS = ('sorani', 'badini', 'kurmanji')
SENTIMENTS = ('positive', 'negative', 'neutral')


def sentiment_trend(scores, margin=0.1):
    """
    Compares the newer half of `scores` (newest first) with the older half.
    """
    if len(scores) < 2:
        return 'stable'
    half = len(scores) // 2
    recent = scores[:half]
    older = scores[half:]
    recent_avg = sum(recent) / len(recent)
    older_avg = sum(older) / len(older)
    if recent_avg > older_avg + margin:
        return 'up'
    if recent_avg < older_avg - margin:
        return 'down'
    return 'stable'


def local_hour(timestamp, tz_name=TIMEZONE):
    value = datetime.strptime(timestamp[:19], '%Y-%m-%dT%H:%M:%S').replace(tzinfo=pytz.utc)
    return value.astimezone(pytz.timezone(tz_name)).hour


class AnalyticsService:
    def __init__(self, queue_size_fn=None):
        self.queue_size_fn = queue_size_fn

    def _now(self):
        return datetime.now(timezone.utc)

    def get_language_breakdown(self, since):
        counts = repository.breakdown('language', since)
        return {language: counts.get(language, 0) for language in LANGUAGES}

    def get_sentiment_analysis(self, since):
        scores = repository.sentiment_scores(since)
        if not scores:
            return {"average": 0, "trend": 'stable'}
        return {
            "average": round(sum(scores) / len(scores), 3),
            "trend": sentiment_trend(scores)
        }

    def get_collection_health(self):
        """
        Success rate over the cycles that finished in the last hour.
        """
        cycles = repository.latest_collection_stats(since=self._now() - timedelta(hours=1))
        total = sum(c['total_mentions'] or 0 for c in cycles)
        processed = sum(c['processed_mentions'] or 0 for c in cycles)
        failed = sum(c['failed_mentions'] or 0 for c in cycles)
        return {
            "last_update": repository.latest_mention_time(),
            "success_rate": round(processed / total * 100) if total else 100,
            "error_count": failed,
            "queue_size": self.queue_size_fn() if self.queue_size_fn else 0
        }

    def get_system_health(self):
        health = {"database": 'healthy', "api": 'healthy'}
        try:
            repository.ping()
        except Exception as e:
            health['database'] = 'down'
            logger.error(f"Database health check failed: {e}")
        if not social_media_api.configured_platforms():
            health['api'] = 'degraded'
        return health

    def get_dashboard_metrics(self):
        try:
            now = self._now()
            day_ago = now - timedelta(hours=24)
            sentiment = self.get_sentiment_analysis(day_ago)

            top_candidates = [
                {
                    "id": c['id'],
                    "name": c.get('name_ku_sorani') or c.get('name_ar') or c['name'],
                    "region": c.get('governorate'),
                    "influence_score": c.get('influence_score') or 0,
                    "trending": c['trending']
                }
                for c in candidate_service.get_top_candidates(10)
            ]

            return {
                "total_mentions": repository.count_mentions(since=day_ago),
                "kurdistan_mentions": repository.count_mentions(since=day_ago, table='kurdistan_mentions'),
                "recent_mentions": repository.count_mentions(since=now - timedelta(minutes=5)),
                "languages": self.get_language_breakdown(day_ago),
                "regions": repository.breakdown('region', day_ago),
                "platforms": repository.breakdown('platform', day_ago),
                "top_candidates": top_candidates,
                "rising_candidates": candidate_service.get_rising_candidates(5),
                "overall_sentiment": sentiment['average'],
                "sentiment_trend": sentiment['trend'],
                "collection_status": self.get_collection_health(),
                "system_health": self.get_system_health()
            }
        except Exception as e:
            logger.error(f"Failed to get dashboard metrics: {e}")
            raise

    def get_hourly_activity(self, mentions):
        """
        24 buckets (local time) with mention count and average sentiment score.
        """
        buckets = {hour: {"count": 0, "sentiment": 0.0} for hour in range(24)}
        for mention in mentions:
            hour = local_hour(mention['detected_at'])
            buckets[hour]['count'] += 1
            buckets[hour]['sentiment'] += mention.get('sentiment_score') or 0
        return [
            {
                "hour": hour,
                "mentions": data['count'],
                "sentiment": round(data['sentiment'] / data['count'], 3) if data['count'] else 0
            }
            for hour, data in buckets.items()
        ]

    def get_kurdistan_priority_analytics(self):
        try:
            day_ago = self._now() - timedelta(hours=24)
            mentions = repository.recent_mentions(day_ago, table='kurdistan_mentions')

            dialects = {dialect: 0 for dialect in DIALECTS}
            regions = {}
            sentiments = {sentiment: 0 for sentiment in SENTIMENTS}
            for mention in mentions:
                if mention.get('dialect') in dialects:
                    dialects[mention['dialect']] += 1
                region = mention.get('region') or 'unknown'
                regions[region] = regions.get(region, 0) + 1
                if mention.get('sentiment') in sentiments:
                    sentiments[mention['sentiment']] += 1

            kurdistan_governorates = [name for name, cfg in GOVERNORATES.items() if cfg['type'] == 'kurdistan']
            top_candidates = [
                {
                    "name": c.get('name_ku_sorani') or c['name'],
                    "region": c.get('governorate'),
                    "influence_score": c.get('influence_score') or 0
                }
                for c in candidate_service.get_top_candidates(5, governorates=kurdistan_governorates)
            ]

            return {
                "total_mentions": len(mentions),
                "dialect_breakdown": dialects,
                "region_breakdown": regions,
                "top_candidates": top_candidates,
                "sentiment_overview": sentiments,
                "hourly_activity": self.get_hourly_activity(mentions)
            }
        except Exception as e:
            logger.error(f"Failed to get Kurdistan priority analytics: {e}")
            raise


analytics_service = AnalyticsService()
