"""
Web page fetcher built on a shared aiohttp session.
"""

import asyncio
import aiohttp
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout


HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')


class FetchError(Exception):
    """Raised when a URL cannot be retrieved."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class FetchTimeoutError(FetchError):
    """Raised when a request exceeds its timeout."""
    pass


class ContentTooLargeError(FetchError):
    """Raised when a response body exceeds the configured size limit."""
    pass


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    content: Optional[bytes] = None
    content_type: str = ''
    encoding: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_html(self) -> bool:
        return is_html_content(self.content_type)

    def text(self) -> str:
        """Decode the body, falling back to common encodings."""
        if not self.content:
            return ''

        for encoding in (self.encoding, 'utf-8', 'latin-1'):
            if not encoding:
                continue
            try:
                return self.content.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                continue

        return self.content.decode('utf-8', errors='ignore')


def is_html_content(content_type: str) -> bool:
    """Check if a Content-Type header denotes an HTML document."""
    content_type = (content_type or '').lower()
    return any(html_type in content_type for html_type in HTML_CONTENT_TYPES)


class WebFetcher:
    """
    Fetches URLs with a fixed User-Agent, a per-request timeout and a body size cap.

    Cancelling the awaiting task aborts the request in flight.
    """

    def __init__(self, user_agent: str, request_timeout: float = 10.0,
                 max_content_bytes: int = 10 * 1024 * 1024,
                 max_connections: int = 100):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_content_bytes = max_content_bytes
        self.max_connections = max_connections

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={'User-Agent': self.user_agent},
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str, timeout: Optional[float] = None,
                    read_body: Optional[Callable[[str], bool]] = None) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch
            timeout: Total timeout in seconds (defaults to request_timeout)
            read_body: Predicate on the Content-Type deciding whether the body
                is downloaded; the body of a successful response is read when omitted

        Returns:
            FetchResult with the final URL, status and (optionally) the body

        Raises:
            FetchError: on transport failure, timeout or oversized body
        """
        if self.session is None:
            raise RuntimeError("WebFetcher.start() must be called before fetch()")

        request_timeout = ClientTimeout(
            total=self.request_timeout if timeout is None else timeout
        )
        start_time = time.monotonic()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, timeout=request_timeout) as response:
                content_type = response.headers.get('Content-Type', '')
                result = FetchResult(
                    url=str(response.url),
                    status_code=response.status,
                    content_type=content_type,
                    encoding=response.charset,
                )

                wants_body = read_body(content_type) if read_body else True
                if 200 <= response.status < 300 and wants_body:
                    result.content = await self._read_content_safely(response, url)
                    self.stats['total_bytes_downloaded'] += len(result.content)

                result.fetch_time = time.monotonic() - start_time

        except asyncio.TimeoutError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Timeout fetching {url}")
            raise FetchTimeoutError(url, f"request timeout for {url}") from e

        except ClientError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Client error fetching {url}: {e}")
            raise FetchError(url, f"error fetching {url}: {e}") from e

        except ValueError as e:
            # yarl rejects some malformed URLs before any I/O happens
            self.stats['failed_requests'] += 1
            raise FetchError(url, f"invalid URL {url}: {e}") from e

        self.stats['successful_requests'] += 1
        self.logger.debug(
            f"Fetched {url}: {result.status_code} "
            f"({len(result.content) if result.content else 0} bytes)"
        )
        return result

    async def _read_content_safely(self, response: aiohttp.ClientResponse, url: str) -> bytes:
        """Read the response body, enforcing max_content_bytes."""
        content_length = response.headers.get('Content-Length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_bytes:
            raise ContentTooLargeError(url, f"content too large for {url} ({content_length} bytes)")

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_bytes:
                raise ContentTooLargeError(url, f"content too large for {url}")
            chunks.append(chunk)

        return b''.join(chunks)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
