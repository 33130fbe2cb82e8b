class CollectorError(Exception):
    """Base error for the collection pipeline."""


class ConfigurationError(CollectorError):
    pass


class PlatformAPIError(CollectorError):
    def __init__(self, platform, message, status=None):
        super().__init__(f"{platform}: {message}" + (f" (status {status})" if status else ""))
        self.platform = platform
        self.status = status


class RateLimitError(PlatformAPIError):
    def __init__(self, platform, retry_after=None):
        super().__init__(platform, "rate limit exceeded", status=429)
        self.retry_after = retry_after


class ScrapeError(CollectorError):
    def __init__(self, url, message):
        super().__init__(f"{url}: {message}")
        self.url = url
