import os
from dotenv import load_dotenv

# Load environment variables from .env file
# Look for .env in the same directory (project root)
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env')
load_dotenv(env_path)

# Base directory for the Python source files
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# File paths
DB_DIR = os.path.join(BASE_DIR, 'db')
SCHEMA_SQL = os.path.join(DB_DIR, 'schema.sql')
DATABASE_PATH = os.getenv('DATABASE_PATH', os.path.join(DB_DIR, 'hamlat.db'))
LOGS_DIR = os.getenv('LOGS_DIR', os.path.join(BASE_DIR, 'logs'))
PROMPTS_DIR = os.path.join(BASE_DIR, 'prompts')
REPORTS_DIR = os.path.join(BASE_DIR, 'reports')
RAW_RESPONSES_DIR = os.path.join(BASE_DIR, 'raw_api_responses')

# Local time for cleanup jobs and digests (Kurdistan/Iraq is UTC+3)
TIMEZONE = os.getenv('TIMEZONE', 'Asia/Baghdad')

# Platform credentials (a missing one disables that platform)
FACEBOOK_ACCESS_TOKEN = os.getenv('FACEBOOK_ACCESS_TOKEN')
INSTAGRAM_ACCESS_TOKEN = os.getenv('INSTAGRAM_ACCESS_TOKEN')
YOUTUBE_API_KEY = os.getenv('YOUTUBE_API_KEY')
TWITTER_BEARER_TOKEN = os.getenv('TWITTER_BEARER_TOKEN')
FACEBOOK_PAGE_IDS = [p.strip() for p in os.getenv('FACEBOOK_PAGE_IDS', '').split(',') if p.strip()]

# HTTP / rate limiting
API_REQUESTS_PER_SECOND = int(os.getenv('API_REQUESTS_PER_SECOND', 3))
HTTP_TIMEOUT_S = int(os.getenv('HTTP_TIMEOUT_S', 30))
MAX_RETRIES = int(os.getenv('MAX_RETRIES', 3))
RATE_LIMIT_COOLDOWN_S = float(os.getenv('RATE_LIMIT_COOLDOWN_S', 2))

# Scheduling
BASE_COLLECTION_INTERVAL_MINUTES = float(os.getenv('BASE_COLLECTION_INTERVAL_MINUTES', 12))
GENERAL_INTERVAL_MINUTES = int(os.getenv('GENERAL_INTERVAL_MINUTES', 15))
DEEP_INTERVAL_MINUTES = int(os.getenv('DEEP_INTERVAL_MINUTES', 60))
SCRAPING_INTERVAL_MINUTES = int(os.getenv('SCRAPING_INTERVAL_MINUTES', 30))
INFLUENCE_REFRESH_MINUTES = int(os.getenv('INFLUENCE_REFRESH_MINUTES', 30))
CLEANUP_HOUR = int(os.getenv('CLEANUP_HOUR', 2))
DIGEST_HOUR = int(os.getenv('DIGEST_HOUR', 8))
KURDISTAN_PASSES = int(os.getenv('KURDISTAN_PASSES', 3))
KURDISTAN_INTERVAL_MINUTES = int(os.getenv('KURDISTAN_INTERVAL_MINUTES', 5))
REPORT_INTERVAL_MINUTES = int(os.getenv('REPORT_INTERVAL_MINUTES', 10))
MAX_CONCURRENT_REGIONS = int(os.getenv('MAX_CONCURRENT_REGIONS', 2))
MAX_PENDING_JOBS = int(os.getenv('MAX_PENDING_JOBS', 20))

# Retention and scoring windows
RETENTION_DAYS = int(os.getenv('RETENTION_DAYS', 30))
INFLUENCE_WINDOW_DAYS = int(os.getenv('INFLUENCE_WINDOW_DAYS', 7))
TRENDING_INFLUENCE_THRESHOLD = int(os.getenv('TRENDING_INFLUENCE_THRESHOLD', 80))

# Web scraping
SCRAPE_RELEVANCE_THRESHOLD = float(os.getenv('SCRAPE_RELEVANCE_THRESHOLD', 0.7))
MAX_ARTICLES_PER_SOURCE = int(os.getenv('MAX_ARTICLES_PER_SOURCE', 10))
SCRAPE_TIMEOUT_S = int(os.getenv('SCRAPE_TIMEOUT_S', 10))

# OpenAI configuration (optional sentiment refinement)
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MAX_RETRIES = int(os.getenv('OPENAI_MAX_RETRIES', 3))
OPENAI_TIMEOUT_MS = int(os.getenv('OPENAI_TIMEOUT_MS', 60000))
OPENAI_REQUESTS_PER_MINUTE = int(os.getenv('OPENAI_REQUESTS_PER_MINUTE', 60))
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
AI_SENTIMENT_ENABLED = os.getenv('AI_SENTIMENT_ENABLED', 'False').lower() == 'true'

# Debug mode
DEBUG_MODE = os.getenv('DEBUG_MODE', 'False').lower() == 'true'

# Email notification
ALERT_RECIPIENTS_FILE = os.path.join(BASE_DIR, 'alert_recipients.txt')
EMAIL_SENDER_EMAIL = os.getenv('EMAIL_SENDER_EMAIL')
EMAIL_SENDER_PASSWORD = os.getenv('EMAIL_SENDER_PASSWORD')
EMAIL_SMTP_SERVER = os.getenv('EMAIL_SMTP_SERVER')
EMAIL_SMTP_PORT = int(os.getenv('EMAIL_SMTP_PORT', 587))

# S3 snapshot of the SQLite database
USE_S3_SYNC = os.getenv('USE_S3_SYNC', 'False').lower() == 'true'
S3_BUCKET = os.getenv('S3_BUCKET')
S3_DB_KEY = os.getenv('S3_DB_KEY', 'hamlat/hamlat.db')
S3_REGION = os.getenv('S3_REGION', 'eu-central-1')
