import openai
import os
import json
import time
import asyncio
from utils.logger import logger
from utils.errors import ConfigurationError
from config import (
    OPENAI_API_KEY,
    OPENAI_MAX_RETRIES,
    OPENAI_TIMEOUT_MS,
    OPENAI_REQUESTS_PER_MINUTE,
    OPENAI_MODEL,
    PROMPTS_DIR
)

VALID_SENTIMENTS = {'positive', 'negative', 'neutral'}

_openai_client = None


def get_openai_client():
    """
    Builds the OpenAI client on first use, so modules import cleanly without a key.
    """
    global _openai_client
    if _openai_client is None:
        if not OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY must be set to use AI sentiment.")
        _openai_client = openai.OpenAI(
            api_key=OPENAI_API_KEY,
            max_retries=OPENAI_MAX_RETRIES,
            timeout=OPENAI_TIMEOUT_MS / 1000  # Convert ms to seconds
        )
    return _openai_client


class IndependentThrottler:
    """
    Spaces requests at least 60/requests_per_minute seconds apart.
    Each instance keeps its own state.
    """
    def __init__(self, requests_per_minute=OPENAI_REQUESTS_PER_MINUTE):
        self.interval_s = 60.0 / requests_per_minute
        self.last_request_time = 0
        self.lock = asyncio.Lock()

    async def __call__(self, request_fn):
        async with self.lock:
            time_since_last = time.time() - self.last_request_time
            if time_since_last < self.interval_s:
                await asyncio.sleep(self.interval_s - time_since_last)
            self.last_request_time = time.time()

        # The OpenAI client is synchronous; run it outside the lock in the executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, request_fn)


def create_throttler(requests_per_minute=OPENAI_REQUESTS_PER_MINUTE):
    return IndependentThrottler(requests_per_minute)


sentiment_throttler = create_throttler()


def load_prompt(filename='sentiment_prompt.txt'):
    prompt_path = os.path.join(PROMPTS_DIR, filename)
    with open(prompt_path, 'r', encoding='utf-8') as f:
        return f.read()


def parse_sentiment_response(content):
    """
    Validates the model's JSON reply. Raises ValueError on anything malformed.
    """
    if not content or not isinstance(content, str) or not content.strip().startswith('{'):
        raise ValueError('Invalid JSON format in response')

    try:
        parsed = json.loads(content.strip())
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse AI response as JSON: {e}") from e

    sentiment = str(parsed.get('sentiment', '')).lower()
    if sentiment not in VALID_SENTIMENTS:
        raise ValueError(f"Unexpected sentiment label: {parsed.get('sentiment')!r}")

    try:
        score = float(parsed.get('score', 0))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Non-numeric sentiment score: {parsed.get('score')!r}") from e

    emotions = parsed.get('emotions') or []
    if not isinstance(emotions, list):
        emotions = [str(emotions)]

    return {
        "sentiment": sentiment,
        "score": max(-1.0, min(1.0, score)),
        "emotions": [str(e) for e in emotions]
    }


async def classify_sentiment(text, language, throttler=None):
    """
    Asks the model for {"sentiment", "score", "emotions"} for one mention.
    """
    throttler = throttler or sentiment_throttler
    client = get_openai_client()
    prompt = load_prompt().replace('{language}', language or 'unknown')

    completion = await throttler(lambda: client.chat.completions.create(
        model=OPENAI_MODEL,
        messages=[
            {"role": "system", "content": prompt},
            {"role": "user", "content": text[:4000]}
        ],
        response_format={"type": "json_object"}
    ))

    if completion.usage:
        logger.debug(f"Token usage - Prompt: {completion.usage.prompt_tokens}, Completion: {completion.usage.completion_tokens}")

    return parse_sentiment_response(completion.choices[0].message.content)
