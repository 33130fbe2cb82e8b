import re
from enum import Enum

from utils.logger import logger
from config import AI_SENTIMENT_ENABLED


class Dialect(str, Enum):
    SORANI = 'sorani'
    BADINI = 'badini'
    KURMANJI = 'kurmanji'
    ARABIC = 'arabic'
    ENGLISH = 'english'


KURDISH_DIALECTS = (Dialect.SORANI, Dialect.BADINI, Dialect.KURMANJI)

ZWNJ = '‌'

# Letters that exist in Sorani orthography but not in Arabic
SORANI_LETTERS = re.compile('[ەێۆڕڵ]')  # ە ێ ۆ ڕ ڵ
# Badini is usually typed with the older "ه‌" spelling for ە, and uses ڤ
BADINI_MARKERS = re.compile(f'ه{ZWNJ}|ڤ')
# Latin-script Kurmanji letters
KURMANJI_LATIN = re.compile('[êîûşçÊÎÛŞÇ]')
ARABIC_SCRIPT = re.compile('[؀-ۿ]')

KEYWORDS = {
    Dialect.SORANI: [
        'هەڵبژاردن', 'کاندید', 'کامپەین', 'سیاسەت', 'پەرلەمان',
        'حکومەت', 'وەزارەت', 'شارەوانی', 'دەنگدەر', 'دەنگدان',
        'کاندیدەکان', 'دیموکراسی', 'دەستەی هەڵبژاردن'
    ],
    Dialect.BADINI: [
        f'ه{ZWNJ}ڵبژاردن', 'کاندید', f'کامپه{ZWNJ}ین', f'سیاسه{ZWNJ}ت', f'په{ZWNJ}رله{ZWNJ}مان',
        f'حکومه{ZWNJ}ت', f'وه{ZWNJ}زاره{ZWNJ}ت', f'شاره{ZWNJ}وانی', f'ده{ZWNJ}نگده{ZWNJ}ر'
    ],
    Dialect.KURMANJI: [
        'hilbijartin', 'kandid', 'kampanya', 'siyaset', 'parlement',
        'hikûmet', 'wezaret', 'şaredarî', 'dengder', 'dengdan', 'demokrasî'
    ],
    Dialect.ARABIC: [
        'انتخابات', 'مرشح', 'حملة انتخابية', 'سياسة', 'برلمان',
        'حكومة', 'وزارة', 'بلدية', 'ناخب', 'تصويت', 'مفوضية الانتخابات'
    ],
    Dialect.ENGLISH: [
        'election', 'candidate', 'campaign', 'politics', 'parliament',
        'government', 'ministry', 'municipality', 'voter', 'voting', 'election commission'
    ]
}

ELECTION_KEYWORDS = [
    'انتخابات', 'مرشح', 'حملة', 'سياسي', 'برلمان', 'تصويت',
    'هەڵبژاردن', f'ه{ZWNJ}ڵبژاردن', 'کاندید', 'کامپەین', 'سیاسی', 'پەرلەمان', 'دەنگ',
    'hilbijartin', 'kandid', 'kampanya', 'parlement',
    'election', 'candidate', 'campaign', 'political', 'parliament', 'vote'
]

POSITIVE_WORDS = [
    'مثبت', 'جيد', 'رائع', 'ناجح', 'قوي', 'دعم', 'أمل',
    'باش', 'سەرکەوتوو', 'پشتگیری', 'هیوا', 'بەهێز',
    'baş', 'serkeftî', 'piştgirî',
    'good', 'great', 'support', 'success', 'strong', 'hope', 'win'
]

NEGATIVE_WORDS = [
    'سلبي', 'سيء', 'فشل', 'ضعيف', 'فساد', 'غضب',
    'خراپ', 'گەندەڵی', 'شکست', 'لاواز',
    'xirab', 'gendelî',
    'bad', 'fail', 'failure', 'weak', 'corruption', 'corrupt', 'angry'
]

TOPIC_TERMS = {
    'election': ['انتخابات', 'هەڵبژاردن', 'hilbijartin', 'election'],
    'government': ['حكومة', 'حکومەت', 'hikûmet', 'government'],
    'economy': ['اقتصاد', 'ئابوور', 'aborî', 'economy'],
    'security': ['أمن', 'ئاسایش', 'ewlehî', 'security'],
    'education': ['تعليم', 'پەروەردە', 'perwerde', 'education'],
}


WORD_TOKEN = re.compile(rf'[\w{ZWNJ}]+')
# Proclitics written attached to Arabic-script words (and, with, for, the)
ATTACHED_PREFIXES = ('', 'وال', 'بال', 'لل', 'ال', 'و', 'ب', 'ل', 'ف')


def _contains(text, term):
    return term.lower() in text


def _tokens(text):
    return set(WORD_TOKEN.findall((text or '').lower()))


def _lexicon_hit(tokens, word):
    """
    Latin words match whole tokens only. Arabic-script words also match with an
    attached prefix or an inflectional suffix.
    """
    if word in tokens:
        return True
    if not ARABIC_SCRIPT.search(word):
        return False
    return any(
        token.startswith(prefix) and token[len(prefix):].startswith(word)
        for token in tokens
        for prefix in ATTACHED_PREFIXES
    )


class LanguageService:
    def detect_kurdish_dialect(self, text):
        """
        Classifies Kurdish text into Sorani, Badini or Kurmanji.
        Kurmanji is recognised by Latin script, Badini by its spelling markers,
        Sorani by its own letters. Text with no marker falls back to Sorani.
        """
        text = text or ''
        lowered = text.lower()
        if KURMANJI_LATIN.search(text) or any(_contains(lowered, kw) for kw in KEYWORDS[Dialect.KURMANJI]):
            return Dialect.KURMANJI
        if BADINI_MARKERS.search(text):
            return Dialect.BADINI
        if SORANI_LETTERS.search(text):
            return Dialect.SORANI
        return Dialect.SORANI

    def is_kurdish_script(self, text):
        return bool(SORANI_LETTERS.search(text) or BADINI_MARKERS.search(text))

    def detect_language(self, text):
        """
        Returns one of sorani, badini, kurmanji, arabic or english.
        """
        if not text or not text.strip():
            return Dialect.ENGLISH.value
        if self.is_kurdish_script(text):
            return self.detect_kurdish_dialect(text).value
        if ARABIC_SCRIPT.search(text):
            return Dialect.ARABIC.value
        lowered = text.lower()
        if KURMANJI_LATIN.search(text) or any(_contains(lowered, kw) for kw in KEYWORDS[Dialect.KURMANJI]):
            return Dialect.KURMANJI.value
        return Dialect.ENGLISH.value

    def is_kurdish(self, language):
        return language in {d.value for d in KURDISH_DIALECTS} or language == 'kurdish'

    def get_keywords(self, language):
        try:
            return list(KEYWORDS[Dialect(language)])
        except ValueError:
            if language == 'kurdish':
                return list(KEYWORDS[Dialect.SORANI])
            return []

    def is_election_related(self, text):
        lowered = (text or '').lower()
        return any(_contains(lowered, kw) for kw in ELECTION_KEYWORDS)

    def election_keyword_hits(self, text):
        lowered = (text or '').lower()
        return {kw for kw in ELECTION_KEYWORDS if _contains(lowered, kw)}

    def extract_topics(self, text):
        lowered = (text or '').lower()
        return [topic for topic, terms in TOPIC_TERMS.items() if any(_contains(lowered, t) for t in terms)]

    def analyze_sentiment(self, text, language=None):
        """
        Keyword lexicon sentiment over word tokens. Each positive word present adds 0.1
        and each negative word subtracts 0.1; the score is clamped to [-1, 1].
        """
        tokens = _tokens(text)
        score = 0.0
        emotions = []

        for word in POSITIVE_WORDS:
            if _lexicon_hit(tokens, word):
                score += 0.1
                emotions.append('hopeful')

        for word in NEGATIVE_WORDS:
            if _lexicon_hit(tokens, word):
                score -= 0.1
                emotions.append('angry')

        score = round(max(-1.0, min(1.0, score)), 2)

        if score > 0.1:
            sentiment = 'positive'
        elif score < -0.1:
            sentiment = 'negative'
        else:
            sentiment = 'neutral'

        return {
            "sentiment": sentiment,
            "score": score,
            "confidence": abs(score),
            "emotions": sorted(set(emotions)),
            "topics": self.extract_topics(text)
        }

    async def analyze_sentiment_ai(self, text, language=None):
        """
        Refines the lexicon result with the OpenAI classifier when enabled.
        Any failure falls back to the lexicon result.
        """
        baseline = self.analyze_sentiment(text, language)
        if not AI_SENTIMENT_ENABLED:
            return baseline

        from api.openai_client import classify_sentiment

        try:
            result = await classify_sentiment(text, language or self.detect_language(text))
        except Exception as e:
            logger.warn(f"AI sentiment failed, using lexicon result: {e}")
            return baseline

        score = round(max(-1.0, min(1.0, float(result.get('score', baseline['score'])))), 2)
        return {
            "sentiment": result.get('sentiment', baseline['sentiment']),
            "score": score,
            "confidence": abs(score),
            "emotions": result.get('emotions') or baseline['emotions'],
            "topics": baseline['topics']
        }


language_service = LanguageService()
