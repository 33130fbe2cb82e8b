import asyncio
import json
import os
import re
from datetime import datetime
from utils.logger import logger
from api.http_client import make_http_request, throttled_request
from utils.errors import PlatformAPIError, RateLimitError
from config import (
    FACEBOOK_ACCESS_TOKEN,
    INSTAGRAM_ACCESS_TOKEN,
    YOUTUBE_API_KEY,
    TWITTER_BEARER_TOKEN,
    FACEBOOK_PAGE_IDS,
    DEBUG_MODE,
    RAW_RESPONSES_DIR
)

API_ENDPOINTS = {
    'facebook': 'https://graph.facebook.com/v18.0',
    'instagram': 'https://graph.facebook.com/v18.0',
    'youtube': 'https://www.googleapis.com/youtube/v3',
    'twitter': 'https://api.twitter.com/2'
}

PLATFORMS = ('facebook', 'instagram', 'youtube', 'twitter')

# Governorate -> spellings seen in posts (governorate, capital city, Arabic and Kurdish script)
REGION_NAMES = {
    'sulaymaniyah': ['sulaymaniyah', 'sulaimani', 'slemani', 'السليمانية', 'سلێمانی'],
    'erbil': ['erbil', 'hawler', 'أربيل', 'اربيل', 'هەولێر'],
    'duhok': ['duhok', 'dohuk', 'دهوك', 'دهۆک'],
    'halabja': ['halabja', 'حلبجة', 'هەڵەبجە'],
    'kirkuk': ['kirkuk', 'كركوك', 'کەرکووک'],
    'baghdad': ['baghdad', 'بغداد'],
    'basra': ['basra', 'البصرة', 'بصرة'],
    'mosul': ['mosul', 'nineveh', 'الموصل', 'نينوى'],
    'najaf': ['najaf', 'النجف'],
    'karbala': ['karbala', 'كربلاء'],
    'dhi_qar': ['dhi qar', 'nasiriyah', 'ذي قار', 'الناصرية'],
    'babil': ['babil', 'babylon', 'hillah', 'بابل', 'الحلة'],
    'qadisiyah': ['qadisiyah', 'diwaniyah', 'القادسية', 'الديوانية'],
    'muthanna': ['muthanna', 'samawah', 'المثنى', 'السماوة'],
    'anbar': ['anbar', 'ramadi', 'الأنبار', 'الانبار', 'الرمادي'],
    'salahuddin': ['salahuddin', 'salah al-din', 'tikrit', 'صلاح الدين', 'تكريت'],
    'diyala': ['diyala', 'baqubah', 'ديالى', 'بعقوبة'],
    'wasit': ['wasit', 'kut', 'واسط', 'الكوت'],
    'maysan': ['maysan', 'amarah', 'ميسان', 'العمارة'],
}

# Platforms whose search API takes the region in the query
SERVER_SCOPED_PLATFORMS = ('youtube', 'twitter')


def _region_pattern(names):
    """Latin spellings match as whole words; Arabic-script ones also match with attached prefixes."""
    latin = [re.escape(name) for name in names if name.isascii()]
    other = [re.escape(name) for name in names if not name.isascii()]
    parts = []
    if latin:
        parts.append(r'\b(?:' + '|'.join(latin) + r')\b')
    parts.extend(other)
    return re.compile('|'.join(parts))


REGION_PATTERNS = {region: _region_pattern(names) for region, names in REGION_NAMES.items()}

API_LIMITS = {
    'facebook': {'posts': 200, 'insights': 200, 'searches': 200, 'window': 'hour'},
    'instagram': {'media': 200, 'insights': 200, 'window': 'hour'},
    'youtube': {'searches': 10000, 'videos': 10000, 'window': 'day'},
    'twitter': {'tweets': 300, 'users': 300, 'window': '15 minutes'}
}

POLITICIAN_QUERY = 'سياسي عراقي OR kurdish politician iraq OR iraqi candidate'
TWITTER_DEFAULT_QUERY = '(سياسي OR مرشح OR برلماني) iraq -is:retweet'


def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _matches(text, query):
    if not query:
        return True
    lowered = (text or '').lower()
    terms = [t.strip().lower() for t in query.replace(' OR ', '|').split('|') if t.strip()]
    return any(term in lowered for term in terms)


class SocialMediaAPI:
    def __init__(self, debug=DEBUG_MODE, raw_responses_dir=RAW_RESPONSES_DIR):
        self.debug = debug
        self.raw_responses_dir = raw_responses_dir
        self.api_keys = {
            'facebook': FACEBOOK_ACCESS_TOKEN,
            'instagram': INSTAGRAM_ACCESS_TOKEN,
            'youtube': YOUTUBE_API_KEY,
            'twitter': TWITTER_BEARER_TOKEN
        }
        self.page_ids = list(FACEBOOK_PAGE_IDS)

    def is_configured(self, platform):
        return bool(self.api_keys.get(platform))

    def configured_platforms(self):
        return [p for p in PLATFORMS if self.is_configured(p)]

    def extract_region(self, text):
        """
        Returns the canonical region named in the text, or 'iraq' when none is found.
        """
        lowered = (text or '').lower()
        for region, pattern in REGION_PATTERNS.items():
            if pattern.search(lowered):
                return region
        return 'iraq'

    def mentions_region(self, text, region):
        pattern = REGION_PATTERNS.get(region)
        return bool(pattern and pattern.search((text or '').lower()))

    def get_api_limits(self):
        return {platform: dict(limits) for platform, limits in API_LIMITS.items()}

    async def _get(self, platform, path, params, headers=None):
        url = f"{API_ENDPOINTS[platform]}/{path}"
        response = await throttled_request(
            lambda: make_http_request({'method': 'GET', 'url': url, 'params': params, 'headers': headers}),
            platform=platform
        )
        data = response.get('data') or {}
        if self.debug:
            self._save_raw_response(platform, path, data)
        return data

    def _save_raw_response(self, platform, path, data):
        os.makedirs(self.raw_responses_dir, exist_ok=True)
        name = path.replace('/', '_')
        raw_response_file = os.path.join(
            self.raw_responses_dir,
            f"{platform}_{name}_{datetime.now().isoformat().replace(':', '-').replace('.', '-')}.json"
        )
        with open(raw_response_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.debug(f"Saved raw {platform} response to {raw_response_file}")

    # ------------------------------------------------------------------
    # Facebook
    # ------------------------------------------------------------------

    def _normalize_facebook_post(self, post, page_id, page_name=None):
        message = post.get('message') or 'Media post'
        return {
            "platform": 'facebook',
            "post_id": post.get('id'),
            "content": message,
            "author_name": page_name or page_id,
            "author_handle": page_id,
            "url": post.get('permalink_url') or f"https://facebook.com/{post.get('id')}",
            "media_url": post.get('full_picture'),
            "likes": _to_int(((post.get('reactions') or {}).get('summary') or {}).get('total_count')),
            "comments": _to_int(((post.get('comments') or {}).get('summary') or {}).get('total_count')),
            "shares": _to_int((post.get('shares') or {}).get('count')),
            "views": 0,
            "published_at": post.get('created_time'),
            "region": self.extract_region(message)
        }

    async def collect_page_data(self, page_id, page_name=None):
        data = await self._get('facebook', f"{page_id}/posts", {
            'access_token': self.api_keys['facebook'],
            'fields': 'id,message,created_time,permalink_url,full_picture,shares,'
                      'reactions.summary(total_count),comments.summary(total_count)',
            'limit': 50
        })
        return [self._normalize_facebook_post(post, page_id, page_name) for post in data.get('data') or []]

    async def collect_facebook(self, query=None, region=None):
        if not self.is_configured('facebook'):
            logger.warn("Facebook access token not configured. Skipping Facebook.")
            return []
        if not self.page_ids:
            logger.debug("No Facebook pages configured.")
            return []

        logger.log("📘 Collecting data from Facebook Graph API")
        mentions = []
        for page_id in self.page_ids:
            try:
                posts = await self.collect_page_data(page_id)
            except RateLimitError:
                raise
            except PlatformAPIError as e:
                logger.error(f"Failed to collect data for Facebook page {page_id}: {e}")
                continue
            mentions.extend(p for p in posts if _matches(p['content'], query))
        return mentions

    # ------------------------------------------------------------------
    # Instagram
    # ------------------------------------------------------------------

    def _normalize_instagram_media(self, media):
        caption = media.get('caption') or 'Instagram post'
        return {
            "platform": 'instagram',
            "post_id": media.get('id'),
            "content": caption,
            "author_name": media.get('username'),
            "author_handle": media.get('username'),
            "url": media.get('permalink'),
            "media_url": media.get('media_url'),
            "likes": _to_int(media.get('like_count')),
            "comments": _to_int(media.get('comments_count')),
            "shares": 0,
            "views": 0,
            "published_at": media.get('timestamp'),
            "region": self.extract_region(caption)
        }

    async def collect_instagram(self, query=None, region=None):
        if not self.is_configured('instagram'):
            logger.warn("Instagram access token not configured. Skipping Instagram.")
            return []

        logger.log("📷 Collecting data from Instagram Graph API")
        data = await self._get('instagram', 'me/media', {
            'access_token': self.api_keys['instagram'],
            'fields': 'id,media_type,media_url,permalink,caption,timestamp,like_count,comments_count,username',
            'limit': 50
        })
        mentions = [self._normalize_instagram_media(m) for m in data.get('data') or []]
        return [m for m in mentions if _matches(m['content'], query)]

    # ------------------------------------------------------------------
    # YouTube
    # ------------------------------------------------------------------

    def _normalize_youtube_video(self, video, channel_id=None, channel_name=None):
        snippet = video.get('snippet') or {}
        video_id = (video.get('id') or {}).get('videoId')
        title = snippet.get('title') or ''
        watch_url = f"https://www.youtube.com/watch?v={video_id}"
        return {
            "platform": 'youtube',
            "post_id": video_id,
            "content": title,
            "author_name": channel_name or snippet.get('channelTitle'),
            "author_handle": channel_id or snippet.get('channelId'),
            "url": watch_url,
            "media_url": watch_url,
            "likes": 0,
            "comments": 0,
            "shares": 0,
            "views": 0,
            "published_at": snippet.get('publishedAt'),
            "region": self.extract_region(f"{title} {snippet.get('description') or ''}")
        }

    async def collect_channel_data(self, channel_id, channel_name=None):
        data = await self._get('youtube', 'search', {
            'key': self.api_keys['youtube'],
            'channelId': channel_id,
            'order': 'date',
            'type': 'video',
            'part': 'snippet',
            'maxResults': 20
        })
        return [self._normalize_youtube_video(v, channel_id, channel_name) for v in data.get('items') or []]

    async def collect_youtube(self, query=None, region=None):
        """
        Channel discovery first (regionCode IQ), then the newest videos of each channel.
        A query narrows the search to matching videos directly.
        """
        if not self.is_configured('youtube'):
            logger.warn("YouTube API key not configured. Skipping YouTube.")
            return []

        logger.log("🎥 Collecting data from YouTube Data API")
        if query:
            data = await self._get('youtube', 'search', {
                'key': self.api_keys['youtube'],
                'q': f"{query} {region}" if region else query,
                'type': 'video',
                'part': 'snippet',
                'order': 'date',
                'maxResults': 25,
                'regionCode': 'IQ'
            })
            return [self._normalize_youtube_video(v) for v in data.get('items') or []]

        data = await self._get('youtube', 'search', {
            'key': self.api_keys['youtube'],
            'q': POLITICIAN_QUERY,
            'type': 'channel',
            'part': 'snippet',
            'maxResults': 50,
            'regionCode': 'IQ'
        })
        mentions = []
        for channel in data.get('items') or []:
            channel_id = (channel.get('id') or {}).get('channelId')
            if not channel_id:
                continue
            try:
                mentions.extend(await self.collect_channel_data(channel_id, (channel.get('snippet') or {}).get('title')))
            except RateLimitError:
                raise
            except PlatformAPIError as e:
                logger.error(f"Failed to collect data for YouTube channel {channel_id}: {e}")
        return mentions

    # ------------------------------------------------------------------
    # Twitter
    # ------------------------------------------------------------------

    def _normalize_tweet(self, tweet, users):
        user = users.get(tweet.get('author_id')) or {}
        metrics = tweet.get('public_metrics') or {}
        username = user.get('username') or tweet.get('author_id')
        text = tweet.get('text') or ''
        return {
            "platform": 'twitter',
            "post_id": tweet.get('id'),
            "content": text,
            "author_name": user.get('name'),
            "author_handle": username,
            "url": f"https://twitter.com/{username}/status/{tweet.get('id')}",
            "media_url": None,
            "likes": _to_int(metrics.get('like_count')),
            "comments": _to_int(metrics.get('reply_count')),
            "shares": _to_int(metrics.get('retweet_count')) + _to_int(metrics.get('quote_count')),
            "views": _to_int(metrics.get('impression_count')),
            "published_at": tweet.get('created_at'),
            "region": self.extract_region(f"{text} {user.get('location') or ''}")
        }

    async def collect_twitter(self, query=None, region=None):
        if not self.is_configured('twitter'):
            logger.warn("Twitter bearer token not configured. Skipping Twitter.")
            return []

        logger.log("🐦 Collecting data from Twitter API")
        if query:
            search_query = f"({query}) {region} -is:retweet" if region else f"({query}) -is:retweet"
        else:
            search_query = TWITTER_DEFAULT_QUERY
        data = await self._get('twitter', 'tweets/search/recent', {
            'query': search_query,
            'max_results': 100,
            'tweet.fields': 'created_at,public_metrics,author_id',
            'expansions': 'author_id',
            'user.fields': 'username,name,location,verified'
        }, headers={'Authorization': f"Bearer {self.api_keys['twitter']}"})

        users = {u.get('id'): u for u in (data.get('includes') or {}).get('users') or []}
        return [self._normalize_tweet(tweet, users) for tweet in data.get('data') or []]

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def search(self, platform, query, region=None):
        """
        Searches one platform for `query` ("term OR term ...").
        YouTube and Twitter add the region to the server-side query, so their results are
        labelled with it. Facebook and Instagram cannot search by region: posts of the
        configured accounts are kept only when they name the region, and keep the region
        extracted from their own text.
        """
        collectors = {
            'facebook': self.collect_facebook,
            'instagram': self.collect_instagram,
            'youtube': self.collect_youtube,
            'twitter': self.collect_twitter
        }
        if platform not in collectors:
            raise ValueError(f"Unsupported platform: {platform}")

        scope = region.replace("_", " ") if region else None
        mentions = await collectors[platform](query, scope)
        if not region:
            return mentions
        if platform in SERVER_SCOPED_PLATFORMS:
            for mention in mentions:
                mention['region'] = region
            return mentions
        return [m for m in mentions if self.mentions_region(m['content'], region)]

    async def collect_from_all_apis(self):
        """
        Collects from every platform concurrently. Returns {platform: [mentions]};
        a failing platform is logged and contributes an empty list.
        """
        logger.log("🔗 Starting API data collection from all platforms")
        results = await asyncio.gather(
            self.collect_facebook(),
            self.collect_instagram(),
            self.collect_youtube(),
            self.collect_twitter(),
            return_exceptions=True
        )

        collected = {}
        for platform, result in zip(PLATFORMS, results):
            if isinstance(result, Exception):
                logger.error(f"{platform} API collection failed: {result}")
                collected[platform] = []
            else:
                collected[platform] = result

        logger.success(f"API data collection completed ({sum(len(v) for v in collected.values())} mentions)")
        return collected


social_media_api = SocialMediaAPI()
