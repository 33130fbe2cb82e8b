import os
import json
from datetime import datetime, timedelta, timezone

from db.repository import repository
from services.candidate_service import candidate_service
from services.regional_service import GOVERNORATES
from utils.logger import logger
from config import KURDISTAN_PASSES, REPORTS_DIR

PRIORITY_LABELS = {
    1: '🟢 KURDISTAN (Erbil, Sulaymaniyah, Duhok, Halabja) - TOP PRIORITY',
    2: '🔵 BAGHDAD - Second Priority',
    3: '🟡 BASRA - Third Priority',
    4: '🟠 NAJAF/KARBALA - Fourth Priority',
    5: '🟣 KIRKUK - Fifth Priority',
    6: '⚪ OTHER REGIONS - Lower Priority'
}

PLATFORM_ICONS = {
    'facebook': '📘',
    'instagram': '📷',
    'youtube': '🎥',
    'twitter': '🐦'
}

SENTIMENT_ICONS = {
    'positive': '😊',
    'negative': '😞',
    'neutral': '😐'
}


class DataCollectionMonitor:
    def __init__(self, reports_dir=REPORTS_DIR, is_running_fn=None):
        self.reports_dir = reports_dir
        self.is_running_fn = is_running_fn
        self.last_report_time = datetime.now(timezone.utc)

    def priority_status(self):
        regions = {}
        for name, cfg in GOVERNORATES.items():
            regions.setdefault(cfg['priority'], []).append(name)
        return {
            "levels": [
                {"priority": level, "label": label, "regions": sorted(regions.get(level, []))}
                for level, label in PRIORITY_LABELS.items()
            ],
            "kurdistan_passes": KURDISTAN_PASSES
        }

    def kurdistan_metrics(self, hour_ago):
        dialects = repository.breakdown('dialect', table='kurdistan_mentions')
        return {
            "total_mentions": repository.count_mentions(table='kurdistan_mentions'),
            "recent_mentions": repository.count_mentions(since=hour_ago, table='kurdistan_mentions'),
            "dialects": {d: dialects.get(d, 0) for d in ('sorani', 'badini', 'kurmanji')}
        }

    def overall_stats(self, hour_ago, day_ago):
        return {
            "total": repository.count_mentions(),
            "last_hour": repository.count_mentions(since=hour_ago),
            "last_24h": repository.count_mentions(since=day_ago)
        }

    def sentiment_distribution(self):
        counts = repository.breakdown('sentiment')
        counts.pop('unknown', None)
        total = sum(counts.values())
        return {
            sentiment: {"count": count, "percentage": round(count / total * 100, 1) if total else 0}
            for sentiment, count in counts.items()
        }

    def system_health(self):
        health = {"database": 'connected', "latest_mention": None, "worker": 'unknown'}
        try:
            repository.ping()
            health['latest_mention'] = repository.latest_mention_time()
        except Exception as e:
            health['database'] = f"connection issue - {e}"
        if self.is_running_fn is not None:
            health['worker'] = 'running' if self.is_running_fn() else 'stopped'
        return health

    def _render(self, report):
        lines = [
            '=' * 80,
            f"📊 PRIORITY-BASED DATA COLLECTION REPORT - {report['generated_at']}",
            f"⏱️  Time since last report: {report['minutes_since_last']} minutes",
            '=' * 80,
            '',
            '🎯 PRIORITY-BASED COLLECTION STATUS'
        ]
        for level in report['priority_status']['levels']:
            lines.append(f"   {level['label']}")
        lines.append(f"   💡 Kurdistan regions get {report['priority_status']['kurdistan_passes']}x more collection passes")

        kurdistan = report['kurdistan']
        lines += ['', '🟢 KURDISTAN DATA COLLECTION',
                  f"   📊 Total Kurdistan mentions: {kurdistan['total_mentions']}",
                  f"   🔥 Recent mentions (1h): {kurdistan['recent_mentions']}",
                  '   🗣️  Kurdish dialect breakdown:']
        for dialect, count in kurdistan['dialects'].items():
            lines.append(f"      {dialect.upper()}: {count} mentions")

        overall = report['overall']
        lines += ['', '📈 OVERALL STATISTICS',
                  f"   📊 Total mentions collected: {overall['total']}",
                  f"   🔥 Last hour mentions: {overall['last_hour']}",
                  f"   📅 Last 24h mentions: {overall['last_24h']}",
                  '', '🌐 PLATFORM BREAKDOWN']
        for platform in report['platforms']:
            lines.append(f"   {PLATFORM_ICONS.get(platform['platform'], '📱')} {platform['platform'].upper()}:")
            lines.append(f"      Total: {platform['total']} | Recent: {platform['recent']}")
            lines.append(f"      Avg Engagement: 👍{round(platform['avg_likes'] or 0)} 💬{round(platform['avg_comments'] or 0)}")
        if not report['platforms']:
            lines.append('   No platform data available yet')

        lines += ['', '🗺️  REGIONAL ACTIVITY']
        for region in report['regions']:
            lines.append(f"   {region['region']}: {region['mentions']} mentions ({region['recent']} recent)")
        if not report['regions']:
            lines.append('   No regional data available yet')

        lines += ['', '👥 TOP CANDIDATES']
        for candidate in report['top_candidates']:
            trending = ' 🔥' if candidate['trending'] else ''
            lines.append(f"   {candidate['name']} ({candidate['governorate'] or 'unknown'}): influence {candidate['influence_score']}{trending}")
        if not report['top_candidates']:
            lines.append('   No candidate data available yet')

        lines += ['', '😊 SENTIMENT ANALYSIS']
        for sentiment, data in report['sentiment'].items():
            lines.append(f"   {SENTIMENT_ICONS.get(sentiment, '❔')} {sentiment.upper()}: {data['count']} ({data['percentage']}%)")
        if not report['sentiment']:
            lines.append('   No sentiment data available yet')

        health = report['system_health']
        lines += ['', '💚 SYSTEM HEALTH',
                  f"   🗄️  Database: {health['database']}",
                  f"   ⏰ Latest mention: {health['latest_mention'] or 'None yet'}",
                  f"   ⚡ Worker: {health['worker']}",
                  '=' * 80]
        return '\n'.join(lines)

    def generate_report(self, save=False):
        """
        Builds the collection report, logs it as text and returns it as a dict.
        With save=True the dict is also written as JSON under the reports directory.
        """
        now = datetime.now(timezone.utc)
        hour_ago = now - timedelta(hours=1)
        day_ago = now - timedelta(hours=24)

        report = {
            "generated_at": now.strftime('%Y-%m-%d %H:%M:%S UTC'),
            "minutes_since_last": round((now - self.last_report_time).total_seconds() / 60),
            "priority_status": self.priority_status(),
            "kurdistan": self.kurdistan_metrics(hour_ago),
            "overall": self.overall_stats(hour_ago, day_ago),
            "platforms": repository.platform_engagement(hour_ago),
            "regions": repository.region_activity(hour_ago, limit=10),
            "top_candidates": [
                {
                    "name": c['name'],
                    "governorate": c.get('governorate'),
                    "influence_score": c.get('influence_score') or 0,
                    "trending": c['trending']
                }
                for c in candidate_service.get_top_candidates(5)
            ],
            "sentiment": self.sentiment_distribution(),
            "system_health": self.system_health()
        }

        logger.log('\n' + self._render(report))
        self.last_report_time = now

        if save:
            os.makedirs(self.reports_dir, exist_ok=True)
            report_path = os.path.join(self.reports_dir, f"collection_report_{now.strftime('%Y%m%d_%H%M%S')}.json")
            with open(report_path, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, ensure_ascii=False)
            logger.log(f"Saved report to {report_path}")
            report['path'] = report_path

        return report


data_collection_monitor = DataCollectionMonitor()
