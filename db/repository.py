import json
import os
import sqlite3
from datetime import datetime, timedelta, timezone

from utils.logger import logger
from config import DATABASE_PATH, SCHEMA_SQL

MENTION_COLUMNS = (
    'platform', 'dedup_key', 'post_id', 'content', 'author_name', 'author_handle',
    'url', 'media_url', 'likes', 'comments', 'shares', 'views', 'sentiment',
    'sentiment_score', 'region', 'language', 'dialect', 'candidate_id',
    'published_at', 'detected_at'
)

KURDISTAN_COLUMNS = (
    'platform', 'dedup_key', 'post_id', 'content', 'author_name', 'author_handle',
    'url', 'likes', 'comments', 'shares', 'views', 'sentiment', 'sentiment_score',
    'region', 'governorate', 'dialect', 'candidate_id', 'priority_level', 'detected_at'
)

# Columns refreshed when an already-stored mention is seen again
REFRESH_COLUMNS = ('content', 'likes', 'comments', 'shares', 'views', 'sentiment', 'sentiment_score')

BREAKDOWN_COLUMNS = {'platform', 'region', 'language', 'dialect', 'sentiment'}


def db_timestamp(value=None):
    """
    Formats a datetime (default: now) as the naive-UTC ISO string stored in every table.
    Strings are passed through so callers can hand back values read from the database.
    """
    if value is None:
        value = datetime.now(timezone.utc)
    if isinstance(value, str):
        return value
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime('%Y-%m-%dT%H:%M:%S')


def hours_ago(hours):
    return db_timestamp(datetime.now(timezone.utc) - timedelta(hours=hours))


class Repository:
    def __init__(self, db_path=DATABASE_PATH):
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.db_path = db_path
        self._initialize_db()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 30000")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize_db(self):
        conn = None
        try:
            conn = self._connect()
            conn.execute("PRAGMA journal_mode = WAL")
            cursor = conn.cursor()
            with open(SCHEMA_SQL, 'r', encoding='utf-8') as f:
                schema_sql = f.read()

            # Split the schema into individual statements
            statements = [s.strip() for s in schema_sql.split(';') if s.strip()]

            for statement in statements:
                try:
                    cursor.execute(statement + ';')
                except sqlite3.OperationalError as e:
                    if "already exists" in str(e):
                        logger.debug(f"Skipping existing database object: {e}")
                    else:
                        raise

            conn.commit()
            logger.debug(f"Database initialized at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Error initializing database: {e}")
            raise
        finally:
            if conn:
                conn.close()

    def _execute_query(self, query, params=(), fetch_one=False, fetch_all=False):
        conn = None
        try:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            if fetch_one:
                row = cursor.fetchone()
                return dict(row) if row else None
            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]
            return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Database query error: {e} - Query: {query} - Params: {params}")
            raise
        finally:
            if conn:
                conn.close()

    def ping(self):
        return self._execute_query("SELECT 1 AS ok", fetch_one=True) is not None

    # ------------------------------------------------------------------
    # Mentions
    # ------------------------------------------------------------------

    def _upsert(self, table, columns, data):
        """
        Inserts a row or refreshes engagement on the existing (platform, dedup_key) row.
        The lookup and the write share one IMMEDIATE transaction, so two writers that race
        on the same mention serialize and exactly one of them sees it as new.
        """
        now = db_timestamp()
        values = {col: data.get(col) for col in columns}
        values['detected_at'] = db_timestamp(values.get('detected_at')) if values.get('detected_at') else now
        for col in ('likes', 'comments', 'shares', 'views'):
            if col in values:
                values[col] = int(values.get(col) or 0)

        insert_cols = list(columns) + ['created_at', 'updated_at']
        placeholders = ', '.join('?' for _ in insert_cols)
        refresh = ', '.join(f"{col} = excluded.{col}" for col in REFRESH_COLUMNS)
        query = f"""
            INSERT INTO {table} ({', '.join(insert_cols)})
            VALUES ({placeholders})
            ON CONFLICT (platform, dedup_key) DO UPDATE SET
                {refresh},
                updated_at = excluded.updated_at
        """
        params = [values[col] for col in columns] + [now, now]

        conn = None
        try:
            conn = self._connect()
            conn.isolation_level = None
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute(
                f"SELECT id FROM {table} WHERE platform = ? AND dedup_key = ?",
                (values['platform'], values['dedup_key'])
            )
            existing = cursor.fetchone()
            cursor.execute(query, params)
            if existing:
                row_id = existing['id']
            else:
                row_id = cursor.lastrowid
            cursor.execute("COMMIT")
            return ("updated" if existing else "new"), row_id
        except sqlite3.Error as e:
            if conn and conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Failed to upsert into {table} ({values['platform']}/{values['dedup_key']}): {e}")
            raise
        finally:
            if conn:
                conn.close()

    def upsert_mention(self, mention):
        """
        Stores a processed mention. Returns ("new" | "updated", row id).
        """
        return self._upsert('social_mentions', MENTION_COLUMNS, mention)

    def upsert_kurdistan_mention(self, mention, mention_id=None):
        status, row_id = self._upsert('kurdistan_mentions', KURDISTAN_COLUMNS, mention)
        if mention_id is not None:
            self._execute_query(
                "UPDATE kurdistan_mentions SET mention_id = ? WHERE id = ?",
                (mention_id, row_id)
            )
        return status, row_id

    def find_mention_by_key(self, platform, dedup_key):
        return self._execute_query(
            "SELECT * FROM social_mentions WHERE platform = ? AND dedup_key = ?",
            (platform, dedup_key),
            fetch_one=True
        )

    def recent_mentions(self, since, region=None, limit=None, table='social_mentions'):
        """
        Mentions detected at or after `since`, newest first.
        """
        query = f"SELECT * FROM {table} WHERE detected_at >= ?"
        params = [db_timestamp(since)]
        if region:
            query += " AND region = ? COLLATE NOCASE"
            params.append(region)
        query += " ORDER BY detected_at DESC, id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))
        return self._execute_query(query, tuple(params), fetch_all=True)

    def count_mentions(self, since=None, table='social_mentions'):
        query = f"SELECT COUNT(*) AS total FROM {table} WHERE 1 = 1"
        params = []
        if since is not None:
            query += " AND detected_at >= ?"
            params.append(db_timestamp(since))
        row = self._execute_query(query, tuple(params), fetch_one=True)
        return row['total'] if row else 0

    def breakdown(self, column, since=None, table='social_mentions', limit=None):
        """
        Counts mentions grouped by one of platform/region/language/dialect/sentiment.
        """
        if column not in BREAKDOWN_COLUMNS:
            raise ValueError(f"Unsupported breakdown column: {column}")
        query = f"SELECT COALESCE({column}, 'unknown') AS key, COUNT(*) AS total FROM {table}"
        params = []
        if since is not None:
            query += " WHERE detected_at >= ?"
            params.append(db_timestamp(since))
        query += " GROUP BY key ORDER BY total DESC"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))
        rows = self._execute_query(query, tuple(params), fetch_all=True)
        return {row['key']: row['total'] for row in rows}

    def platform_engagement(self, recent_since):
        return self._execute_query(
            """
            SELECT platform,
                   COUNT(*) AS total,
                   SUM(CASE WHEN detected_at >= ? THEN 1 ELSE 0 END) AS recent,
                   AVG(likes) AS avg_likes,
                   AVG(comments) AS avg_comments
            FROM social_mentions
            GROUP BY platform
            ORDER BY total DESC
            """,
            (db_timestamp(recent_since),),
            fetch_all=True
        )

    def region_activity(self, recent_since, limit=10):
        return self._execute_query(
            """
            SELECT region,
                   COUNT(*) AS mentions,
                   SUM(CASE WHEN detected_at >= ? THEN 1 ELSE 0 END) AS recent
            FROM social_mentions
            WHERE region IS NOT NULL
            GROUP BY region
            ORDER BY mentions DESC
            LIMIT ?
            """,
            (db_timestamp(recent_since), limit),
            fetch_all=True
        )

    def sentiment_scores(self, since):
        """
        Sentiment scores since `since`, newest first.
        """
        rows = self._execute_query(
            "SELECT sentiment_score FROM social_mentions WHERE detected_at >= ? ORDER BY detected_at DESC, id DESC",
            (db_timestamp(since),),
            fetch_all=True
        )
        return [row['sentiment_score'] or 0 for row in rows]

    def latest_mention_time(self):
        row = self._execute_query("SELECT MAX(detected_at) AS latest FROM social_mentions", fetch_one=True)
        return row['latest'] if row else None

    def delete_mentions_before(self, cutoff):
        """
        Deletes mentions detected before `cutoff` from both mention tables.
        Returns (social_deleted, kurdistan_deleted).
        """
        cutoff_str = db_timestamp(cutoff)
        kurdistan_deleted = self._execute_query(
            "DELETE FROM kurdistan_mentions WHERE detected_at < ?", (cutoff_str,)
        )
        social_deleted = self._execute_query(
            "DELETE FROM social_mentions WHERE detected_at < ?", (cutoff_str,)
        )
        return social_deleted, kurdistan_deleted

    # ------------------------------------------------------------------
    # Scraped content
    # ------------------------------------------------------------------

    def scraped_url_exists(self, url):
        return self._execute_query(
            "SELECT id FROM scraped_content WHERE url = ?", (url,), fetch_one=True
        ) is not None

    def store_scraped_content(self, article):
        """
        Inserts a scraped article unless its URL is already stored. Returns True when inserted.
        """
        now = db_timestamp()
        inserted = self._execute_query(
            """
            INSERT OR IGNORE INTO scraped_content
            (title, content, url, source, source_type, relevance_score, language, region, detected_at, last_scraped)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                article.get('title'), article.get('content'), article['url'], article.get('source'),
                article.get('source_type'), article.get('relevance_score'), article.get('language'),
                article.get('region'), now, now
            )
        )
        return inserted == 1

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def upsert_candidate(self, candidate):
        now = db_timestamp()
        self._execute_query(
            """
            INSERT INTO candidates
            (name, name_ku_sorani, name_ar, name_en, party, governorate, position,
             priority_level, region_type, influence_score, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (name) DO UPDATE SET
                name_ku_sorani = COALESCE(excluded.name_ku_sorani, candidates.name_ku_sorani),
                name_ar = COALESCE(excluded.name_ar, candidates.name_ar),
                name_en = COALESCE(excluded.name_en, candidates.name_en),
                party = COALESCE(excluded.party, candidates.party),
                governorate = COALESCE(excluded.governorate, candidates.governorate),
                position = COALESCE(excluded.position, candidates.position),
                priority_level = excluded.priority_level,
                region_type = excluded.region_type,
                updated_at = excluded.updated_at
            """,
            (
                candidate['name'], candidate.get('name_ku_sorani'), candidate.get('name_ar'),
                candidate.get('name_en'), candidate.get('party'), candidate.get('governorate'),
                candidate.get('position'), candidate.get('priority_level', 6),
                candidate.get('region_type'), candidate.get('influence_score', 0), now, now
            )
        )
        return self._execute_query(
            "SELECT * FROM candidates WHERE name = ?", (candidate['name'],), fetch_one=True
        )

    def get_candidate(self, candidate_id):
        return self._execute_query("SELECT * FROM candidates WHERE id = ?", (candidate_id,), fetch_one=True)

    def all_candidates(self):
        return self._execute_query("SELECT * FROM candidates ORDER BY id", fetch_all=True)

    def search_candidates(self, query, limit=10):
        pattern = f"%{query}%"
        return self._execute_query(
            """
            SELECT * FROM candidates
            WHERE name LIKE ? OR name_ku_sorani LIKE ? OR name_ar LIKE ? OR name_en LIKE ?
            ORDER BY influence_score DESC
            LIMIT ?
            """,
            (pattern, pattern, pattern, pattern, limit),
            fetch_all=True
        )

    def update_candidate_influence(self, candidate_id, influence_score, last_activity=None):
        """
        `last_activity` is the newest mention time; None keeps the stored value.
        """
        self._execute_query(
            "UPDATE candidates SET influence_score = ?, last_activity = COALESCE(?, last_activity), updated_at = ? "
            "WHERE id = ?",
            (influence_score, db_timestamp(last_activity) if last_activity else None, db_timestamp(), candidate_id)
        )

    def top_candidates(self, limit=10, governorates=None):
        query = "SELECT * FROM candidates"
        params = []
        if governorates:
            query += f" WHERE governorate COLLATE NOCASE IN ({', '.join('?' for _ in governorates)})"
            params.extend(governorates)
        query += " ORDER BY influence_score DESC, id ASC LIMIT ?"
        params.append(limit)
        return self._execute_query(query, tuple(params), fetch_all=True)

    def candidate_mentions(self, candidate_id, since):
        return self._execute_query(
            "SELECT * FROM social_mentions WHERE candidate_id = ? AND detected_at >= ?",
            (candidate_id, db_timestamp(since)),
            fetch_all=True
        )

    def candidate_mention_counts(self, start, end=None):
        """
        Mention counts per candidate in [start, end).
        """
        query = "SELECT candidate_id, COUNT(*) AS total FROM social_mentions WHERE candidate_id IS NOT NULL AND detected_at >= ?"
        params = [db_timestamp(start)]
        if end is not None:
            query += " AND detected_at < ?"
            params.append(db_timestamp(end))
        query += " GROUP BY candidate_id"
        rows = self._execute_query(query, tuple(params), fetch_all=True)
        return {row['candidate_id']: row['total'] for row in rows}

    # ------------------------------------------------------------------
    # Collection stats
    # ------------------------------------------------------------------

    def record_collection_stats(self, stats):
        self._execute_query(
            """
            INSERT INTO collection_stats
            (cycle_type, region, start_time, end_time, duration_ms, total_mentions, new_mentions,
             kurdistan_mentions, processed_mentions, failed_mentions, platform_counts)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stats['cycle_type'], stats.get('region'), db_timestamp(stats['start_time']),
                db_timestamp(stats['end_time']), stats.get('duration_ms'), stats.get('total', 0),
                stats.get('new', 0), stats.get('kurdistan', 0), stats.get('processed', 0),
                stats.get('failed', 0), json.dumps(stats.get('platforms', {}))
            )
        )

    def latest_collection_stats(self, since=None):
        query = "SELECT * FROM collection_stats"
        params = []
        if since is not None:
            query += " WHERE end_time >= ?"
            params.append(db_timestamp(since))
        query += " ORDER BY end_time DESC, id DESC"
        rows = self._execute_query(query, tuple(params), fetch_all=True)
        for row in rows:
            row['platform_counts'] = json.loads(row['platform_counts'] or '{}')
        return rows

    def database_stats(self):
        stats = {
            'total_mentions': self.count_mentions(),
            'kurdistan_mentions': self.count_mentions(table='kurdistan_mentions'),
            'scraped_articles': 0,
            'candidates': 0,
            'file_size_mb': 0,
            'last_mention_date': self.latest_mention_time()
        }
        stats['scraped_articles'] = self._execute_query(
            "SELECT COUNT(*) AS total FROM scraped_content", fetch_one=True
        )['total']
        stats['candidates'] = self._execute_query(
            "SELECT COUNT(*) AS total FROM candidates", fetch_one=True
        )['total']
        if os.path.exists(self.db_path):
            stats['file_size_mb'] = os.path.getsize(self.db_path) / 1024 / 1024
        return stats


# Initialize a global repository instance
repository = Repository()
