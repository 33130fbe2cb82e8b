import requests
import time
import json
import asyncio
from collections import deque
from utils.logger import logger
from utils.errors import PlatformAPIError, RateLimitError
from config import (
    API_REQUESTS_PER_SECOND,
    HTTP_TIMEOUT_S,
    MAX_RETRIES,
    RATE_LIMIT_COOLDOWN_S
)


class RateLimiter:
    """
    Token bucket shared by every platform call. Waiters are served in FIFO order.
    """
    def __init__(self, requests_per_second):
        self.requests_per_second = requests_per_second
        self.available_tokens = requests_per_second
        self.interval_s = 1.0 / requests_per_second
        self.last_refill_time = time.monotonic()
        self.queue = deque()

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self.last_refill_time
        if elapsed > self.interval_s:
            tokens_to_add = int(elapsed / self.interval_s)
            self.available_tokens = min(self.requests_per_second, self.available_tokens + tokens_to_add)
            self.last_refill_time = now

    async def acquire(self):
        self._refill()
        if self.available_tokens > 0 and not self.queue:
            self.available_tokens -= 1
            return True

        future = asyncio.get_running_loop().create_future()
        self.queue.append(future)
        return await future

    def release(self):
        while self.queue:
            future = self.queue.popleft()
            if not future.done():
                future.set_result(True)
                return
        self.available_tokens = min(self.requests_per_second, self.available_tokens + 1)

    @property
    def pending(self):
        return len(self.queue)


rate_limiter = RateLimiter(API_REQUESTS_PER_SECOND)


async def make_http_request(options):
    """
    Runs a blocking `requests` call in the default executor and normalizes the response.
    `options` holds method, url, params, headers and data (JSON body).
    """
    method = options.get('method', 'GET')
    url = options.get('url')
    params = options.get('params')
    headers = options.get('headers')
    data = options.get('data')
    timeout = options.get('timeout', HTTP_TIMEOUT_S)

    try:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: requests.request(method, url, params=params, headers=headers, json=data, timeout=timeout)
        )
        response.raise_for_status()

        content_type = response.headers.get('Content-Type', '')

        if 'application/json' in content_type or response.text.strip().startswith(('{', '[')):
            try:
                parsed_data = response.json()
            except json.JSONDecodeError:
                logger.error(f"Error parsing JSON response from {url}: {response.text[:500]}...")
                parsed_data = {"error": "Failed to parse JSON", "body": response.text}
        else:
            logger.debug(f"Received non-JSON response ({content_type}) from {url}")
            parsed_data = {"error": "Non-JSON response", "body": response.text, "statusCode": response.status_code}

        return {
            "status": response.status_code,
            "statusText": response.reason,
            "headers": dict(response.headers),
            "data": parsed_data
        }
    except requests.exceptions.HTTPError as http_err:
        body = http_err.response.text[:500] if http_err.response is not None else ''
        logger.error(f"HTTP error occurred: {http_err} - Response: {body}...")
        raise
    except requests.exceptions.ConnectionError as conn_err:
        logger.error(f"Connection error occurred: {conn_err}")
        raise
    except requests.exceptions.Timeout as timeout_err:
        logger.error(f"Timeout error occurred: {timeout_err}")
        raise
    except requests.exceptions.RequestException as req_err:
        logger.error(f"An unexpected error occurred: {req_err}")
        raise


async def throttled_request(request_fn, platform='api'):
    """
    Runs `request_fn` under the shared rate limiter. An HTTP 429 waits for the
    cooldown and retries, up to MAX_RETRIES attempts, then raises RateLimitError.
    Any other request failure is raised as PlatformAPIError.
    """
    attempt = 1
    while True:
        await rate_limiter.acquire()
        try:
            return await request_fn()
        except requests.exceptions.HTTPError as error:
            status = error.response.status_code if error.response is not None else None
            if status != 429:
                raise PlatformAPIError(platform, str(error), status) from error
            if attempt >= MAX_RETRIES:
                raise RateLimitError(platform, error.response.headers.get('Retry-After')) from error
            logger.warn(f"{platform}: rate limit exceeded (429). Waiting {RATE_LIMIT_COOLDOWN_S}s before retry...")
        except requests.exceptions.RequestException as error:
            raise PlatformAPIError(platform, str(error)) from error
        finally:
            rate_limiter.release()

        await asyncio.sleep(RATE_LIMIT_COOLDOWN_S)
        attempt += 1
        logger.log(f"{platform}: retrying request after rate limit cooldown (attempt {attempt})...")
