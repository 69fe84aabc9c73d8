"""
URL-level duplicate detection for a crawl run.
"""

import logging
import threading
from typing import Dict, Set
from urllib.parse import urlparse, urlunparse


def normalize_url(url: str) -> str:
    """
    Normalize a URL for claiming.

    Keeps scheme, host, path and query; strips the fragment. Scheme and host
    are lower-cased and an empty path becomes "/".

    Raises:
        ValueError: if the URL is malformed or has no scheme/host
    """
    parsed = urlparse(url.strip())

    # Accessing .port validates the port component
    parsed.port

    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"URL must be absolute: {url!r}")

    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path or '/',
        parsed.params,
        parsed.query,
        ''  # Remove fragment
    ))


class DuplicateDetector:
    """
    Visited registry shared by all workers.

    try_claim() is an atomic test-and-insert: exactly one caller wins each
    normalized URL for the lifetime of the run, whatever depth it was found at.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._claimed: Set[str] = set()
        self._lock = threading.Lock()
        self.stats = {
            'total_checks': 0,
            'url_duplicates': 0,
        }

    def try_claim(self, url: str) -> bool:
        """
        Claim a URL for fetching.

        Args:
            url: An absolute URL, normalized or not

        Returns:
            True if this call was the first to claim the URL

        Raises:
            ValueError: if the URL cannot be normalized
        """
        normalized = normalize_url(url)

        with self._lock:
            self.stats['total_checks'] += 1
            if normalized in self._claimed:
                self.stats['url_duplicates'] += 1
                return False
            self._claimed.add(normalized)

        self.logger.debug(f"Claimed URL: {normalized}")
        return True

    def is_claimed(self, url: str) -> bool:
        with self._lock:
            return normalize_url(url) in self._claimed

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)

    def get_stats(self) -> Dict[str, int]:
        """Get duplicate detection statistics."""
        with self._lock:
            return {**self.stats, 'total_claimed': len(self._claimed)}
