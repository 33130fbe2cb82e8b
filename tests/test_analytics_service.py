from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from services.analytics_service import AnalyticsService, local_hour, sentiment_trend


@pytest.fixture
def analytics():
    return AnalyticsService(queue_size_fn=lambda: 4)


@pytest.mark.parametrize('scores, expected', [
    ([0.5, 0.5, 0.0, 0.0], 'up'),
    ([0.0, 0.0, 0.5, 0.5], 'down'),
    ([0.2, 0.15, 0.1, 0.1], 'stable'),
    ([0.9], 'stable'),
    ([], 'stable'),
])
def test_sentiment_trend_halves(scores, expected):
    assert sentiment_trend(scores) == expected


def test_local_hour_uses_baghdad_time():
    assert local_hour('2025-01-01T21:30:00') == 0
    assert local_hour('2025-01-01T05:00:00') == 8


def test_hourly_activity_buckets(analytics):
    mentions = [
        {"detected_at": '2025-01-01T07:10:00', "sentiment_score": 0.4},
        {"detected_at": '2025-01-01T07:50:00', "sentiment_score": 0.0},
        {"detected_at": '2025-01-01T12:00:00', "sentiment_score": -0.5},
    ]
    buckets = analytics.get_hourly_activity(mentions)
    assert len(buckets) == 24
    assert buckets[10] == {"hour": 10, "mentions": 2, "sentiment": 0.2}
    assert buckets[15]['mentions'] == 1
    assert buckets[0] == {"hour": 0, "mentions": 0, "sentiment": 0}


def test_collection_health_from_cycle_stats(analytics, repo):
    now = datetime.now(timezone.utc)
    repo.record_collection_stats({
        "cycle_type": 'regional', "start_time": now, "end_time": now,
        "total": 10, "new": 5, "processed": 8, "failed": 2
    })
    health = analytics.get_collection_health()
    assert health['success_rate'] == 80
    assert health['error_count'] == 2
    assert health['queue_size'] == 4


def test_collection_health_without_cycles():
    health = AnalyticsService().get_collection_health()
    assert health == {"last_update": None, "success_rate": 100, "error_count": 0, "queue_size": 0}


def test_system_health(analytics):
    assert analytics.get_system_health() == {"database": 'healthy', "api": 'degraded'}
    with patch('services.analytics_service.social_media_api.configured_platforms', return_value=['twitter']):
        assert analytics.get_system_health()['api'] == 'healthy'


def test_dashboard_metrics(analytics, repo, make_mention):
    candidate = repo.upsert_candidate({"name": 'Rewaz Faiq', "name_ku_sorani": 'ڕێواز فایەق', "governorate": 'erbil'})
    repo.update_candidate_influence(candidate['id'], 85)
    repo.upsert_mention(make_mention(post_id='1', language='sorani', sentiment_score=0.3, candidate_id=candidate['id']))
    repo.upsert_mention(make_mention(post_id='2', language='arabic', region='baghdad', platform='facebook'))
    repo.upsert_mention(make_mention(post_id='3', detected_at=datetime.now(timezone.utc) - timedelta(days=2)))
    repo.upsert_kurdistan_mention(make_mention(post_id='1', governorate='erbil', dialect='sorani'))

    metrics = analytics.get_dashboard_metrics()
    assert metrics['total_mentions'] == 2
    assert metrics['kurdistan_mentions'] == 1
    assert metrics['recent_mentions'] == 2
    assert metrics['languages'] == {"sorani": 1, "badini": 0, "kurmanji": 0, "arabic": 1, "english": 0}
    assert metrics['regions'] == {"erbil": 1, "baghdad": 1}
    assert metrics['platforms'] == {"twitter": 1, "facebook": 1}
    assert metrics['top_candidates'][0]['name'] == 'ڕێواز فایەق'
    assert metrics['top_candidates'][0]['trending'] is True
    assert metrics['rising_candidates'][0]['growth'] == 100.0
    assert metrics['overall_sentiment'] == 0.15
    assert metrics['collection_status']['queue_size'] == 4
    assert metrics['system_health']['database'] == 'healthy'


def test_kurdistan_priority_analytics(analytics, repo, make_mention):
    repo.update_candidate_influence(repo.upsert_candidate({"name": 'Erbil Candidate', "governorate": 'erbil'})['id'], 50)
    repo.upsert_candidate({"name": 'Basra Candidate', "governorate": 'basra'})
    repo.upsert_kurdistan_mention(make_mention(post_id='1', governorate='erbil', dialect='sorani', sentiment='positive'))
    repo.upsert_kurdistan_mention(make_mention(post_id='2', governorate='duhok', region='duhok', dialect='badini'))

    result = analytics.get_kurdistan_priority_analytics()
    assert result['total_mentions'] == 2
    assert result['dialect_breakdown'] == {"sorani": 1, "badini": 1, "kurmanji": 0}
    assert result['region_breakdown'] == {"erbil": 1, "duhok": 1}
    assert result['sentiment_overview'] == {"positive": 1, "negative": 0, "neutral": 1}
    assert [c['name'] for c in result['top_candidates']] == ['Erbil Candidate']
    assert sum(bucket['mentions'] for bucket in result['hourly_activity']) == 2
