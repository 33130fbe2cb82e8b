import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests

from api.http_client import RateLimiter, make_http_request, throttled_request
from utils.errors import PlatformAPIError, RateLimitError


def http_error(status, headers=None):
    response = MagicMock(status_code=status, headers=headers or {}, text='error body')
    return requests.exceptions.HTTPError(f"{status} error", response=response)


async def test_rate_limiter_queues_when_tokens_run_out():
    limiter = RateLimiter(2)
    assert await limiter.acquire()
    assert await limiter.acquire()

    waiter = asyncio.ensure_future(limiter.acquire())
    await asyncio.sleep(0)
    assert not waiter.done()
    assert limiter.pending == 1

    limiter.release()
    assert await waiter is True
    assert limiter.pending == 0


async def test_rate_limiter_release_without_waiters_returns_token():
    limiter = RateLimiter(1)
    await limiter.acquire()
    assert limiter.available_tokens == 0
    limiter.release()
    assert limiter.available_tokens == 1
    limiter.release()
    assert limiter.available_tokens == 1


async def test_make_http_request_parses_json():
    response = MagicMock(status_code=200, reason='OK', headers={'Content-Type': 'application/json'}, text='{"data": []}')
    response.json.return_value = {"data": []}
    with patch('api.http_client.requests.request', return_value=response) as mock_request:
        result = await make_http_request({'url': 'https://api.example/x', 'params': {'q': 'election'}})

    assert result == {"status": 200, "statusText": 'OK', "headers": {'Content-Type': 'application/json'}, "data": {"data": []}}
    args, kwargs = mock_request.call_args
    assert args == ('GET', 'https://api.example/x')
    assert kwargs['params'] == {'q': 'election'}
    assert kwargs['timeout'] == 30


async def test_make_http_request_wraps_non_json_body():
    response = MagicMock(status_code=200, reason='OK', headers={'Content-Type': 'text/html'}, text='<html></html>')
    with patch('api.http_client.requests.request', return_value=response):
        result = await make_http_request({'url': 'https://example.iq'})
    assert result['data']['error'] == 'Non-JSON response'


async def test_make_http_request_raises_http_errors():
    response = MagicMock()
    response.raise_for_status.side_effect = http_error(500)
    with patch('api.http_client.requests.request', return_value=response):
        with pytest.raises(requests.exceptions.HTTPError):
            await make_http_request({'url': 'https://api.example/x'})


@pytest.fixture
def no_cooldown():
    with patch('api.http_client.RATE_LIMIT_COOLDOWN_S', 0), patch('api.http_client.MAX_RETRIES', 3):
        yield


async def test_throttled_request_retries_after_429(no_cooldown):
    request_fn = AsyncMock(side_effect=[http_error(429), {"status": 200}])
    assert await throttled_request(request_fn, platform='twitter') == {"status": 200}
    assert request_fn.await_count == 2


async def test_throttled_request_gives_up_with_rate_limit_error(no_cooldown):
    request_fn = AsyncMock(side_effect=http_error(429, {'Retry-After': '900'}))
    with pytest.raises(RateLimitError) as excinfo:
        await throttled_request(request_fn, platform='twitter')
    assert request_fn.await_count == 3
    assert excinfo.value.status == 429
    assert excinfo.value.retry_after == '900'
    assert excinfo.value.platform == 'twitter'


async def test_throttled_request_wraps_other_http_errors(no_cooldown):
    request_fn = AsyncMock(side_effect=http_error(403))
    with pytest.raises(PlatformAPIError) as excinfo:
        await throttled_request(request_fn, platform='facebook')
    assert request_fn.await_count == 1
    assert excinfo.value.status == 403
    assert excinfo.value.platform == 'facebook'
    assert not isinstance(excinfo.value, RateLimitError)


async def test_throttled_request_wraps_connection_errors(no_cooldown):
    request_fn = AsyncMock(side_effect=requests.exceptions.ConnectionError('refused'))
    with pytest.raises(PlatformAPIError) as excinfo:
        await throttled_request(request_fn, platform='youtube')
    assert excinfo.value.status is None
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)
