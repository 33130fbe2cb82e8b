import asyncio
from urllib.parse import urljoin

import feedparser
import requests
from bs4 import BeautifulSoup

from api.social_media_api import social_media_api
from db.repository import repository
from services.language_service import language_service
from utils.errors import ScrapeError
from utils.logger import logger
from config import MAX_ARTICLES_PER_SOURCE, SCRAPE_RELEVANCE_THRESHOLD, SCRAPE_TIMEOUT_S

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'

SCRAPING_TARGETS = {
    'news': [
        {"url": 'https://www.aljazeera.net', "region": 'baghdad'},
        {"url": 'https://www.bbc.com/arabic', "region": 'baghdad'},
        {"url": 'https://arabic.rt.com', "region": 'baghdad'},
        {"url": 'https://www.alhurra.com', "region": 'baghdad'},
        {"url": 'https://www.dw.com/ar', "region": 'baghdad'},
        {"url": 'https://www.rudaw.net', "region": 'erbil'},
        {"url": 'https://www.kurdistan24.net', "region": 'erbil'},
        {"url": 'https://www.basnews.com', "region": 'erbil'},
        {"url": 'https://www.shafaaq.com', "region": 'baghdad'},
        {"url": 'https://www.iraqinews.com', "region": 'baghdad'}
    ],
    'official': [
        {"url": 'https://www.iec.gov.iq', "region": 'baghdad'},
        {"url": 'https://www.parliament.iq', "region": 'baghdad'},
        {"url": 'https://www.pmo.iq', "region": 'baghdad'},
        {"url": 'https://www.mofa.gov.iq', "region": 'baghdad'}
    ],
    'party': [
        {"url": 'https://www.alhikmahp.com', "region": 'baghdad'},
        {"url": 'https://www.taqaddum.iq', "region": 'anbar'},
        {"url": 'https://www.al-fateh.iq', "region": 'baghdad'},
        {"url": 'https://www.kdp.info', "region": 'erbil'},
        {"url": 'https://www.pukmedia.com', "region": 'sulaymaniyah'}
    ]
}

RSS_FEEDS = [
    {"url": 'https://www.aljazeera.net/rss/RssFeeds?type=rss', "region": 'baghdad'},
    {"url": 'https://arabic.rt.com/rss/', "region": 'baghdad'},
    {"url": 'https://feeds.bbci.co.uk/arabic/rss.xml', "region": 'baghdad'},
    {"url": 'https://www.rudaw.net/rss', "region": 'erbil'},
    {"url": 'https://www.kurdistan24.net/en/rss', "region": 'erbil'}
]

ARTICLE_SELECTOR = 'article, .article, .news-item, .post, .entry'
OFFICIAL_SELECTOR = '.announcement, .press-release, .official-statement, .news-release'
PARTY_SELECTOR = 'article, .statement, .announcement, .policy, .candidate'
PARTY_TITLE_TERMS = ('مرشح', 'كانديد', 'کاندید', 'candidate')

ACCEPT_LANGUAGE = {
    'news': 'ar,en;q=0.9',
    'official': 'ar,en;q=0.9',
    'party': 'ar,en,ku;q=0.8'
}


def _first_text(elem, selector):
    found = elem.select_one(selector)
    return found.get_text(' ', strip=True) if found else ''


def _first_link(elem, base_url):
    anchor = elem.find('a', href=True)
    return urljoin(base_url + '/', anchor['href']) if anchor else base_url


class WebScrapingService:
    def __init__(self):
        self.scraping_targets = SCRAPING_TARGETS
        self.rss_feeds = RSS_FEEDS

    async def fetch(self, url, accept_language='ar,en;q=0.9', timeout=SCRAPE_TIMEOUT_S):
        headers = {'User-Agent': USER_AGENT, 'Accept-Language': accept_language}
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, lambda: requests.get(url, headers=headers, timeout=timeout)
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ScrapeError(url, str(e)) from e
        return response.text

    def _collect(self, soup, selector, base_url, title_selector, content_selector, accept):
        items = []
        for elem in soup.select(selector):
            title = _first_text(elem, title_selector)
            content = _first_text(elem, content_selector)
            if not title or not accept(title, content):
                continue
            items.append({
                "title": title,
                "content": content,
                "url": _first_link(elem, base_url),
                "date": _first_text(elem, 'time, .date, .published'),
                "source": base_url
            })
        return items

    def extract_articles(self, html, base_url):
        """
        Election-related articles from a news page, at most MAX_ARTICLES_PER_SOURCE.
        """
        soup = BeautifulSoup(html, 'html.parser')
        articles = self._collect(
            soup, ARTICLE_SELECTOR, base_url, 'h1, h2, h3, .title, .headline', 'p, .content, .excerpt',
            lambda title, content: language_service.is_election_related(f"{title} {content}")
        )
        return articles[:MAX_ARTICLES_PER_SOURCE]

    def extract_official_data(self, html, base_url):
        soup = BeautifulSoup(html, 'html.parser')
        items = self._collect(
            soup, OFFICIAL_SELECTOR, base_url, 'h1, h2, h3, .title', 'p, .content',
            lambda title, content: True
        )
        return items[:MAX_ARTICLES_PER_SOURCE]

    def extract_party_content(self, html, base_url):
        soup = BeautifulSoup(html, 'html.parser')
        items = self._collect(
            soup, PARTY_SELECTOR, base_url, 'h1, h2, h3, .title', 'p, .content',
            lambda title, content: any(term in title.lower() for term in PARTY_TITLE_TERMS)
        )
        return items[:MAX_ARTICLES_PER_SOURCE]

    def analyze_political_relevance(self, text):
        """
        Election-related text scores 0.5 plus 0.1 per distinct election keyword (max 1.0).
        Other text scores 0.1 per political topic, at most 0.3.
        """
        language = language_service.detect_language(text)
        region = social_media_api.extract_region(text)

        hits = language_service.election_keyword_hits(text)
        if hits:
            score = min(1.0, 0.5 + 0.1 * len(hits))
        else:
            score = min(0.3, 0.1 * len(language_service.extract_topics(text)))

        return {
            "score": round(score, 2),
            "language": language,
            "region": region
        }

    def process_article(self, article, source_type, default_region=None):
        """
        Stores a relevant, unseen article. Returns "stored", "duplicate" or "irrelevant".
        """
        if repository.scraped_url_exists(article['url']):
            return 'duplicate'

        relevance = self.analyze_political_relevance(f"{article.get('content') or ''} {article.get('title') or ''}")
        if relevance['score'] <= SCRAPE_RELEVANCE_THRESHOLD:
            return 'irrelevant'

        region = relevance['region'] if relevance['region'] != 'iraq' else (default_region or 'iraq')
        stored = repository.store_scraped_content({
            **article,
            "source_type": source_type,
            "relevance_score": relevance['score'],
            "language": relevance['language'],
            "region": region
        })
        if not stored:
            return 'duplicate'

        logger.debug(f"Stored article: {article.get('title', '')[:50]}...")
        return 'stored'

    async def _scrape_category(self, source_type, extractor):
        summary = {"sources": 0, "failed": 0, "stored": 0, "duplicate": 0, "irrelevant": 0}
        for target in self.scraping_targets[source_type]:
            url = target['url']
            summary['sources'] += 1
            try:
                html = await self.fetch(url, ACCEPT_LANGUAGE[source_type])
                items = extractor(html, url)
                for item in items:
                    summary[self.process_article(item, source_type, target['region'])] += 1
            except Exception as e:
                summary['failed'] += 1
                logger.error(f"Failed to scrape {source_type} site {url}: {e}")
        logger.log(f"{source_type}: {summary['stored']} stored from {summary['sources'] - summary['failed']}/{summary['sources']} sites")
        return summary

    async def scrape_news_websites(self):
        logger.log("📰 Scraping Iraqi news websites")
        return await self._scrape_category('news', self.extract_articles)

    async def scrape_government_sites(self):
        logger.log("🏛️ Scraping government and election commission sites")
        return await self._scrape_category('official', self.extract_official_data)

    async def scrape_political_party_sites(self):
        logger.log("🏛️ Scraping political party websites")
        return await self._scrape_category('party', self.extract_party_content)

    def parse_feed(self, feed_text, feed_url):
        """
        Election-related entries of an RSS/Atom document as articles.
        """
        parsed = feedparser.parse(feed_text)
        if parsed.bozo and not parsed.entries:
            raise ScrapeError(feed_url, f"unparseable feed: {parsed.get('bozo_exception')}")

        articles = []
        for entry in parsed.entries:
            title = (entry.get('title') or '').strip()
            raw = entry.get('summary') or entry.get('description') or ''
            summary = BeautifulSoup(raw, 'html.parser').get_text(' ', strip=True) if raw else ''
            link = (entry.get('link') or '').strip()
            if not title or not link:
                continue
            if not language_service.is_election_related(f"{title} {summary}"):
                continue
            articles.append({
                "title": title,
                "content": summary,
                "url": link,
                "date": entry.get('published') or entry.get('updated') or '',
                "source": feed_url
            })
        return articles[:MAX_ARTICLES_PER_SOURCE]

    async def collect_from_rss_feeds(self):
        logger.log("📡 Collecting data from RSS feeds")
        summary = {"sources": 0, "failed": 0, "stored": 0, "duplicate": 0, "irrelevant": 0}
        for feed in self.rss_feeds:
            summary['sources'] += 1
            try:
                feed_text = await self.fetch(feed['url'])
                for article in self.parse_feed(feed_text, feed['url']):
                    summary[self.process_article(article, 'rss', feed['region'])] += 1
            except Exception as e:
                summary['failed'] += 1
                logger.error(f"Failed to read RSS feed {feed['url']}: {e}")
        logger.log(f"rss: {summary['stored']} stored from {summary['sources'] - summary['failed']}/{summary['sources']} feeds")
        return summary

    async def start_scraping(self):
        """
        Runs every scraping category concurrently and returns a summary per category.
        """
        logger.log("🔍 Starting web scraping for Iraqi political data")
        news, official, party, rss = await asyncio.gather(
            self.scrape_news_websites(),
            self.scrape_government_sites(),
            self.scrape_political_party_sites(),
            self.collect_from_rss_feeds()
        )
        summary = {"news": news, "official": official, "party": party, "rss": rss}
        summary['stored'] = sum(part['stored'] for part in (news, official, party, rss))
        logger.success(f"Web scraping completed: {summary['stored']} articles stored")
        return summary


web_scraping_service = WebScrapingService()
