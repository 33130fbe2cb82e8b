import os
import tempfile
from datetime import datetime, timezone

import pytest

# Point the database and logs at a scratch directory before config is imported
_TEST_DIR = tempfile.mkdtemp(prefix='hamlat_tests_')
os.environ['DATABASE_PATH'] = os.path.join(_TEST_DIR, 'hamlat_test.db')
os.environ['LOGS_DIR'] = os.path.join(_TEST_DIR, 'logs')
os.environ['USE_S3_SYNC'] = 'False'
os.environ['AI_SENTIMENT_ENABLED'] = 'False'
for _key in (
    'FACEBOOK_ACCESS_TOKEN', 'INSTAGRAM_ACCESS_TOKEN', 'YOUTUBE_API_KEY', 'TWITTER_BEARER_TOKEN',
    'FACEBOOK_PAGE_IDS', 'OPENAI_API_KEY', 'EMAIL_SENDER_EMAIL', 'EMAIL_SENDER_PASSWORD', 'EMAIL_SMTP_SERVER'
):
    os.environ[_key] = ''

TABLES = ('kurdistan_mentions', 'social_mentions', 'scraped_content', 'collection_stats', 'candidates')


@pytest.fixture(autouse=True)
def clean_db():
    """Every test starts from empty tables."""
    from db.repository import repository
    for table in TABLES:
        repository._execute_query(f"DELETE FROM {table}")
    yield repository


@pytest.fixture
def repo(clean_db):
    return clean_db


@pytest.fixture
def make_mention():
    def factory(**overrides):
        mention = {
            "platform": 'twitter',
            "post_id": '1001',
            "content": 'Election campaign in Erbil',
            "author_name": 'Rudaw',
            "author_handle": 'rudaw',
            "url": 'https://twitter.com/rudaw/status/1001',
            "likes": 10,
            "comments": 2,
            "shares": 1,
            "views": 100,
            "sentiment": 'neutral',
            "sentiment_score": 0.0,
            "region": 'erbil',
            "language": 'english',
            "published_at": '2025-10-01T10:00:00Z',
            "detected_at": datetime.now(timezone.utc)
        }
        mention.update(overrides)
        if 'dedup_key' not in mention:
            mention['dedup_key'] = f"id:{mention['post_id']}" if mention.get('post_id') else f"url:{mention['url']}"
        return mention
    return factory
