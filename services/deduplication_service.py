import hashlib
import re
from db.repository import repository
from utils.logger import logger

WHITESPACE = re.compile(r'\s+')


def normalize_content(text):
    return WHITESPACE.sub(' ', (text or '').strip().lower())


def compute_dedup_key(mention):
    """
    Identity of a mention within its platform: the post id when present, then the URL,
    then a sha256 of the normalized content and author.
    """
    post_id = mention.get('post_id')
    if post_id:
        return f"id:{post_id}"
    url = (mention.get('url') or '').strip()
    if url:
        return f"url:{url}"
    author = mention.get('author_handle') or mention.get('author_name') or ''
    digest = hashlib.sha256(f"{normalize_content(mention.get('content'))}|{author.lower()}".encode('utf-8'))
    return f"sha256:{digest.hexdigest()}"


class DeduplicationService:
    @staticmethod
    async def process_mention(mention):
        """
        Looks a mention up by its dedup key. Returns {"isNew": True} for unseen mentions,
        otherwise {"isNew": False, "existing": row}.
        """
        platform = mention.get('platform')
        dedup_key = mention.get('dedup_key') or compute_dedup_key(mention)
        existing = repository.find_mention_by_key(platform, dedup_key)

        if existing:
            logger.debug(f"Duplicate mention {platform}/{dedup_key} (stored as #{existing['id']})")
            return {
                "isNew": False,
                "existing": existing
            }

        return {
            "isNew": True
        }

    @staticmethod
    async def record_mention(mention):
        """
        Upserts the mention under its dedup key. The storage constraint decides the
        outcome, so concurrent writers of the same mention produce one row.
        Returns ("new" | "updated", row id).
        """
        mention = dict(mention)
        mention['dedup_key'] = mention.get('dedup_key') or compute_dedup_key(mention)
        try:
            return repository.upsert_mention(mention)
        except Exception as e:
            logger.error(f"Error recording mention {mention.get('platform')}/{mention['dedup_key']}: {e}")
            raise
