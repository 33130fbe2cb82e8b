import ipaddress
from collections import Counter
from enum import Enum

from db.repository import repository, hours_ago
from services.language_service import Dialect, language_service
from utils.logger import logger
from config import BASE_COLLECTION_INTERVAL_MINUTES


class Priority(str, Enum):
    SULAYMANIYAH = 'SULAYMANIYAH'
    ERBIL = 'ERBIL'
    BAGHDAD = 'BAGHDAD'
    BASRA = 'BASRA'
    DUHOK = 'DUHOK'
    KIRKUK = 'KIRKUK'
    OTHER = 'OTHER'


REGION_PRIORITY = {
    Priority.SULAYMANIYAH: {
        "label": "Sulaymaniyah (Mania)",
        "frequency": 6,
        "regions": ['Sulaymaniyah', 'Mania', 'Halabja'],
        "languages": [Dialect.SORANI.value, Dialect.BADINI.value, Dialect.KURMANJI.value],
        "importance": 'CRITICAL_1',
        "priority_order": 1
    },
    Priority.ERBIL: {
        "label": "Erbil (Our Bill)",
        "frequency": 5,
        "regions": ['Erbil', 'Our Bill', 'Hawler'],
        "languages": [Dialect.SORANI.value, Dialect.BADINI.value, Dialect.KURMANJI.value],
        "importance": 'CRITICAL_2',
        "priority_order": 2
    },
    Priority.BAGHDAD: {
        "label": "Baghdad",
        "frequency": 4,
        "regions": ['Baghdad'],
        "languages": [Dialect.ARABIC.value, Dialect.ENGLISH.value],
        "importance": 'HIGH_1',
        "priority_order": 3
    },
    Priority.BASRA: {
        "label": "Basra",
        "frequency": 3,
        "regions": ['Basra'],
        "languages": [Dialect.ARABIC.value],
        "importance": 'HIGH_2',
        "priority_order": 4
    },
    Priority.DUHOK: {
        "label": "Duhok (Duhog)",
        "frequency": 2,
        "regions": ['Duhok', 'Duhog', 'Dohuk'],
        "languages": [Dialect.BADINI.value, Dialect.KURMANJI.value],
        "importance": 'MEDIUM_HIGH',
        "priority_order": 5
    },
    Priority.KIRKUK: {
        "label": "Kirkuk",
        "frequency": 1.5,
        "regions": ['Kirkuk'],
        "languages": [Dialect.KURMANJI.value, Dialect.ARABIC.value],
        "importance": 'MEDIUM',
        "priority_order": 6
    },
    Priority.OTHER: {
        "label": "Other Regions",
        "frequency": 0.5,
        "regions": [
            'Najaf', 'Karbala', 'Mosul', 'Nineveh', 'Anbar', 'Salahuddin', 'Diyala',
            'Muthanna', 'Qadisiyah', 'Maysan', 'Wasit', 'Babil', 'Dhi Qar'
        ],
        "languages": [Dialect.ARABIC.value],
        "importance": 'LOW',
        "priority_order": 7
    }
}

# Governorate collection order (1 = collected first) used by the priority collector
GOVERNORATES = {
    'erbil': {"priority": 1, "languages": ['sorani', 'badini', 'kurmanji'], "type": 'kurdistan'},
    'sulaymaniyah': {"priority": 1, "languages": ['sorani', 'badini'], "type": 'kurdistan'},
    'duhok': {"priority": 1, "languages": ['badini', 'kurmanji'], "type": 'kurdistan'},
    'halabja': {"priority": 1, "languages": ['sorani'], "type": 'kurdistan'},
    'baghdad': {"priority": 2, "languages": ['arabic'], "type": 'central'},
    'basra': {"priority": 3, "languages": ['arabic'], "type": 'south'},
    'najaf': {"priority": 4, "languages": ['arabic'], "type": 'religious'},
    'karbala': {"priority": 4, "languages": ['arabic'], "type": 'religious'},
    'kirkuk': {"priority": 5, "languages": ['sorani', 'arabic'], "type": 'disputed'},
    'mosul': {"priority": 6, "languages": ['arabic'], "type": 'north'},
    'anbar': {"priority": 6, "languages": ['arabic'], "type": 'west'},
    'salahuddin': {"priority": 6, "languages": ['arabic'], "type": 'central'},
    'diyala': {"priority": 6, "languages": ['arabic', 'sorani'], "type": 'central'},
    'wasit': {"priority": 6, "languages": ['arabic'], "type": 'south'},
    'maysan': {"priority": 6, "languages": ['arabic'], "type": 'south'},
    'dhi_qar': {"priority": 6, "languages": ['arabic'], "type": 'south'},
    'muthanna': {"priority": 6, "languages": ['arabic'], "type": 'south'},
    'qadisiyah': {"priority": 6, "languages": ['arabic'], "type": 'south'},
    'babil': {"priority": 6, "languages": ['arabic'], "type": 'central'}
}

KURDISTAN_REGIONS = {'erbil', 'our bill', 'hawler', 'sulaymaniyah', 'mania', 'duhok', 'duhog', 'dohuk', 'halabja', 'kurdistan'}

KURDISTAN_NETWORKS = [
    ipaddress.ip_network('104.28.0.0/20'),
    ipaddress.ip_network('185.11.0.0/20'),
    ipaddress.ip_network('37.237.0.0/16'),
]

TRENDING_TOPICS = [
    'election', 'government', 'economy', 'security', 'education',
    'healthcare', 'infrastructure', 'corruption', 'development'
]

HIGH_PRIORITY = (Priority.SULAYMANIYAH, Priority.ERBIL, Priority.BAGHDAD, Priority.BASRA)


def _normalize(region):
    return (region or '').replace('_', ' ').strip().lower()


class RegionalService:
    def get_region_priority(self, region):
        name = _normalize(region)
        for priority, cfg in REGION_PRIORITY.items():
            if name in (r.lower() for r in cfg['regions']):
                return priority
        return Priority.OTHER

    def get_region_config(self, region):
        name = _normalize(region)
        for cfg in REGION_PRIORITY.values():
            if name in (r.lower() for r in cfg['regions']):
                return cfg
        return None

    def is_high_priority_region(self, region):
        return self.get_region_priority(region) in HIGH_PRIORITY

    def is_kurdistan_region(self, region):
        return _normalize(region) in KURDISTAN_REGIONS

    def is_kurdistan_ip(self, ip):
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(address in network for network in KURDISTAN_NETWORKS if address.version == network.version)

    def get_collection_schedule(self, base_interval_minutes=BASE_COLLECTION_INTERVAL_MINUTES):
        """
        One entry per priority tier. A tier's polling interval is the base interval
        divided by its frequency multiplier (12 min base: 2, 2.4, 3, 4, 6, 8, 24 minutes).
        """
        schedule = []
        for priority, cfg in REGION_PRIORITY.items():
            schedule.append({
                "region": cfg['label'],
                "regions": list(cfg['regions']),
                "priority": priority,
                "frequency": cfg['frequency'],
                "priority_order": cfg['priority_order'],
                "interval_seconds": round(base_interval_minutes * 60 / cfg['frequency'])
            })
        return sorted(schedule, key=lambda entry: entry['priority_order'])

    def get_priority_regions_in_order(self):
        return [
            {"region": cfg['label'], "priority": priority, "frequency": cfg['frequency']}
            for priority, cfg in REGION_PRIORITY.items()
            if priority != Priority.OTHER
        ]

    def get_multiplier(self, priority):
        if priority == Priority.OTHER:
            return 1
        return REGION_PRIORITY[Priority(priority)]['frequency']

    def calculate_priority_score(self, priority, influence_score):
        try:
            priority = Priority(priority)
        except ValueError:
            priority = self.get_region_priority(priority)
        return round(influence_score * self.get_multiplier(priority))

    def extract_trending_topics(self, mentions, limit=5):
        counts = Counter()
        for mention in mentions:
            content = (mention.get('content') or '').lower()
            topics = set(language_service.extract_topics(content))
            topics.update(topic for topic in TRENDING_TOPICS if topic in content)
            counts.update(topics)
        return [topic for topic, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]]

    def calculate_sentiment_trend(self, mentions):
        """
        Compares the 5 newest mentions against the next 5 (newest first ordering).
        """
        if len(mentions) < 10:
            return 'stable'

        recent = mentions[:5]
        older = mentions[5:10]
        recent_avg = sum(m.get('sentiment_score') or 0 for m in recent) / len(recent)
        older_avg = sum(m.get('sentiment_score') or 0 for m in older) / len(older)
        diff = recent_avg - older_avg

        if diff > 0.1:
            return 'up'
        if diff < -0.1:
            return 'down'
        return 'stable'

    def get_regional_trends(self, region):
        try:
            priority = self.get_region_priority(region)
            cfg = self.get_region_config(region)
            recent_mentions = repository.recent_mentions(hours_ago(24), region=region, limit=100)

            candidate_stats = {}
            for mention in recent_mentions:
                candidate_id = mention.get('candidate_id')
                if not candidate_id:
                    continue
                if candidate_id not in candidate_stats:
                    candidate = repository.get_candidate(candidate_id)
                    if not candidate:
                        continue
                    candidate_stats[candidate_id] = {
                        "name": candidate.get('name_ku_sorani') or candidate.get('name_ar') or candidate['name'],
                        "influence_score": candidate.get('influence_score') or 0,
                        "sentiment": mention.get('sentiment_score') or 0,
                        "mention_count": 0
                    }
                candidate_stats[candidate_id]['mention_count'] += 1

            top_candidates = sorted(
                candidate_stats.values(), key=lambda c: c['influence_score'], reverse=True
            )[:5]

            return {
                "region": region,
                "priority": priority,
                "priority_order": cfg['priority_order'] if cfg else 7,
                "mention_count": len(recent_mentions),
                "top_candidates": top_candidates,
                "trending_topics": self.extract_trending_topics(recent_mentions),
                "sentiment_trend": self.calculate_sentiment_trend(recent_mentions)
            }
        except Exception as e:
            logger.error(f"Failed to get regional trends for {region}: {e}")
            raise


regional_service = RegionalService()
