from datetime import datetime, timedelta, timezone

import pytest

from db.repository import db_timestamp
from services.candidate_service import candidate_service, mention_influence


def test_mention_influence_weights_engagement_and_sentiment():
    assert mention_influence({"likes": 100, "comments": 10, "shares": 10, "sentiment_score": 0.5}) == pytest.approx(18.75)
    assert mention_influence({"likes": 100}) == pytest.approx(10)
    assert mention_influence({"likes": 100, "sentiment_score": -1}) == pytest.approx(5)


CANDIDATES = [
    {"id": 1, "name": 'Masrour Barzani', "name_ar": 'مسرور بارزاني'},
    {"id": 2, "name": 'Masoud Barzani'},
    {"id": 3, "name": 'Bafel Talabani', "name_ku_sorani": 'بافڵ تاڵەبانی'},
    {"id": 4, "name": 'Bafel Ahmed'},
]


def ids(matches):
    return [c['id'] for c in matches]


def test_full_name_variants_match():
    assert ids(candidate_service.extract_candidate_mentions('Speech by Masrour Barzani', CANDIDATES)) == [1]
    assert ids(candidate_service.extract_candidate_mentions('وتاری بافڵ تاڵەبانی', CANDIDATES)) == [3]
    assert ids(candidate_service.extract_candidate_mentions('لقاء مع مسرور بارزاني', CANDIDATES)) == [1]


def test_unique_first_name_matches_as_word():
    assert ids(candidate_service.extract_candidate_mentions('masrour spoke today', CANDIDATES)) == [1]
    # shared first name is ambiguous
    assert ids(candidate_service.extract_candidate_mentions('bafel spoke today', CANDIDATES)) == []
    # substring of another word is not a match
    assert ids(candidate_service.extract_candidate_mentions('masroury', CANDIDATES)) == []


def test_no_content_matches_nothing():
    assert candidate_service.extract_candidate_mentions('', CANDIDATES) == []
    assert candidate_service.extract_candidate_mentions('Barzani family', CANDIDATES) == []


def test_upsert_defaults_priority_from_governorate(repo):
    stored = candidate_service.upsert_candidate({"name": 'Rewaz Faiq', "governorate": 'Erbil'})
    assert stored['priority_level'] == 1
    assert stored['region_type'] == 'kurdistan'
    other = candidate_service.upsert_candidate({"name": 'Someone Else', "governorate": 'Atlantis'})
    assert other['priority_level'] == 6
    assert other['region_type'] == 'other'


def test_seed_from_csv(repo, tmp_path):
    path = tmp_path / 'candidates.csv'
    path.write_text(
        '\ufeffname,name_ku_sorani,name_ar,name_en,party,governorate,position\n'
        'Shaswar Abdulwahid,شاسوار عبدالواحد,,,New Generation,sulaymaniyah,Leader\n'
        ',,,,,,\n'
        'Mohammed Shia al-Sudani,,محمد شياع السوداني,,,baghdad,\n',
        encoding='utf-8'
    )
    assert candidate_service.seed_from_csv(str(path)) == 2
    stored = repo.search_candidates('Shaswar')[0]
    assert stored['name_ku_sorani'] == 'شاسوار عبدالواحد'
    assert stored['name_ar'] is None
    assert stored['priority_level'] == 1


def test_search_candidates_ignores_blank_query(repo):
    candidate_service.upsert_candidate({"name": 'Rewaz Faiq'})
    assert candidate_service.search_candidates('  ') == []
    assert len(candidate_service.search_candidates('rewaz')) == 1


def test_update_influence_score_averages_window(repo, make_mention):
    candidate = candidate_service.upsert_candidate({"name": 'Rewaz Faiq', "governorate": 'erbil'})
    repo.upsert_mention(make_mention(post_id='1', likes=100, comments=0, shares=0, candidate_id=candidate['id']))
    repo.upsert_mention(make_mention(post_id='2', likes=200, comments=0, shares=0, candidate_id=candidate['id']))
    repo.upsert_mention(make_mention(post_id='3', likes=9000, comments=0, shares=0, candidate_id=candidate['id'],
                                     detected_at=datetime.now(timezone.utc) - timedelta(days=10)))

    assert candidate_service.update_influence_score(candidate['id']) == 15
    assert repo.get_candidate(candidate['id'])['influence_score'] == 15


def test_update_influence_without_mentions_is_zero(repo):
    candidate = candidate_service.upsert_candidate({"name": 'Quiet Candidate'})
    assert candidate_service.update_influence_score(candidate['id']) == 0
    assert repo.get_candidate(candidate['id'])['last_activity'] is None


def test_last_activity_is_newest_mention_time(repo, make_mention):
    candidate = candidate_service.upsert_candidate({"name": 'Rewaz Faiq', "governorate": 'erbil'})
    newest = datetime.now(timezone.utc) - timedelta(hours=3)
    repo.upsert_mention(make_mention(post_id='1', candidate_id=candidate['id'], detected_at=newest - timedelta(days=1)))
    repo.upsert_mention(make_mention(post_id='2', candidate_id=candidate['id'], detected_at=newest))

    candidate_service.update_influence_score(candidate['id'])
    assert repo.get_candidate(candidate['id'])['last_activity'] == db_timestamp(newest)


def test_trending_threshold_is_strict():
    assert candidate_service.is_trending({"influence_score": 81})
    assert not candidate_service.is_trending({"influence_score": 80})
    assert not candidate_service.is_trending({})


def test_top_candidates_flag_trending(repo):
    a = candidate_service.upsert_candidate({"name": 'A Candidate'})
    b = candidate_service.upsert_candidate({"name": 'B Candidate'})
    repo.update_candidate_influence(a['id'], 95)
    repo.update_candidate_influence(b['id'], 20)
    top = candidate_service.get_top_candidates(2)
    assert [(c['name'], c['trending']) for c in top] == [('A Candidate', True), ('B Candidate', False)]


def test_rising_candidates_compare_day_windows(repo, make_mention):
    now = datetime.now(timezone.utc)
    yesterday = now - timedelta(hours=30)
    a = candidate_service.upsert_candidate({"name": 'A Candidate'})
    b = candidate_service.upsert_candidate({"name": 'B Candidate'})
    c = candidate_service.upsert_candidate({"name": 'C Candidate'})

    def add(post_id, candidate, when):
        repo.upsert_mention(make_mention(post_id=post_id, candidate_id=candidate['id'], detected_at=when))

    add('a1', a, now)
    add('a2', a, now)
    add('a3', a, now)
    add('a4', a, yesterday)
    add('b1', b, now)
    add('c1', c, now)
    add('c2', c, yesterday)
    add('c3', c, yesterday)

    rising = candidate_service.get_rising_candidates()
    assert [(r['name'], r['growth']) for r in rising] == [('A Candidate', 200.0), ('B Candidate', 100.0)]
    assert rising[0]['mentions'] == 3
