import os
import sqlite3
from datetime import datetime
import boto3
from botocore.exceptions import ClientError, NoCredentialsError
from utils.logger import logger
from config import S3_BUCKET, S3_DB_KEY, S3_REGION, DATABASE_PATH, USE_S3_SYNC


def get_database_stats(db_path):
    """Mention and candidate counts of a local database file"""
    stats = {
        'file_size_mb': 0,
        'social_mentions': 0,
        'kurdistan_mentions': 0,
        'candidates': 0,
        'latest_mention': None
    }

    if not os.path.exists(db_path):
        return stats
    stats['file_size_mb'] = os.path.getsize(db_path) / 1024 / 1024

    try:
        conn = sqlite3.connect(db_path)
        try:
            cursor = conn.cursor()
            for table in ('social_mentions', 'kurdistan_mentions', 'candidates'):
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
            cursor.execute("SELECT MAX(detected_at) FROM social_mentions")
            stats['latest_mention'] = cursor.fetchone()[0]
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.debug(f"Could not get database stats: {e}")

    return stats


class S3DatabaseSync:
    def __init__(self, enabled=USE_S3_SYNC, local_path=DATABASE_PATH):
        self.enabled = enabled
        self.local_path = local_path
        self.bucket = S3_BUCKET
        self.key = S3_DB_KEY
        self._s3 = None

    @property
    def s3(self):
        """S3 client, created and checked on first use"""
        if self._s3 is None:
            try:
                self._s3 = boto3.client('s3', region_name=S3_REGION)
                self._test_s3_access()
                logger.log(f"S3 sync initialized - Bucket: {self.bucket}, Key: {self.key}")
            except NoCredentialsError:
                self._s3 = None
                logger.error("AWS credentials not found. Please configure AWS credentials.")
                raise
        return self._s3

    def _test_s3_access(self):
        try:
            self._s3.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            error_code = e.response['Error']['Code']
            if error_code == '404':
                logger.error(f"S3 bucket '{self.bucket}' does not exist")
            elif error_code == '403':
                logger.error(f"Access denied to S3 bucket '{self.bucket}'")
            else:
                logger.error(f"Error accessing S3 bucket: {e}")
            self._s3 = None
            raise

    async def download_latest(self):
        """Download the latest snapshot to the local database path. Returns True if one was downloaded."""
        if not self.enabled:
            logger.debug("S3 sync is disabled")
            return False

        try:
            s3_info = self.s3.head_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchKey'):
                logger.warn(f"Database snapshot not found in S3 ({self.key}). Using the local database.")
                return False
            raise

        logger.log(f"📊 Found database snapshot s3://{self.bucket}/{self.key}")
        logger.log(f"   Size: {s3_info['ContentLength'] / 1024 / 1024:.2f} MB")
        logger.log(f"   Last Modified: {s3_info['LastModified'].strftime('%Y-%m-%d %H:%M:%S UTC')}")
        metadata = s3_info.get('Metadata', {})
        if metadata.get('mention-count'):
            logger.log(f"   Mentions: {metadata['mention-count']}")

        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.local_path)), exist_ok=True)
            self.s3.download_file(self.bucket, self.key, self.local_path)
        except ClientError as e:
            logger.error(f"Failed to download database from S3: {e}")
            if os.path.exists(self.local_path):
                logger.warn("Using existing local database")
                return False
            raise

        stats = get_database_stats(self.local_path)
        logger.success(
            f"Downloaded database from S3: {stats['social_mentions']:,} mentions, "
            f"{stats['kurdistan_mentions']:,} Kurdistan mentions, {stats['candidates']:,} candidates"
        )
        return True

    async def upload_changes(self):
        """Upload the local database with its counts in the object metadata. Returns True if uploaded."""
        if not self.enabled:
            return False

        if not os.path.exists(self.local_path):
            logger.error(f"Local database not found at {self.local_path}")
            return False

        stats = get_database_stats(self.local_path)
        logger.log(f"⬆️  Uploading database to s3://{self.bucket}/{self.key} ({stats['file_size_mb']:.2f} MB)")

        try:
            self.s3.upload_file(
                self.local_path,
                self.bucket,
                self.key,
                ExtraArgs={
                    'Metadata': {
                        'uploaded-by': os.environ.get('USER', 'unknown'),
                        'source-machine': os.environ.get('HOSTNAME', 'unknown'),
                        'upload-time': datetime.now().isoformat(),
                        'mention-count': str(stats['social_mentions']),
                        'kurdistan-mention-count': str(stats['kurdistan_mentions']),
                        'candidate-count': str(stats['candidates'])
                    }
                }
            )
            response = self.s3.head_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            logger.error(f"Failed to upload database to S3: {e}")
            raise

        logger.success(f"Uploaded database to S3 (version {response.get('VersionId', 'not-versioned')})")
        return True


s3_sync = S3DatabaseSync()
