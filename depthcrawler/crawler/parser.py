"""
HTML link extraction and URL resolution.
"""

import logging
from typing import List, Optional, Union
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup


CRAWLABLE_SCHEMES = ('http', 'https')


class LinkExtractionError(Exception):
    """Raised when a document cannot be parsed at all."""
    pass


def resolve_url(base_url: str, href: str) -> Optional[str]:
    """
    Resolve a reference against a base URL.

    Returns:
        The absolute http(s) URL, or None if the reference is malformed or
        points to another scheme (mailto:, javascript:, ...)
    """
    try:
        absolute_url = urljoin(base_url, href.strip())
        parsed = urlparse(absolute_url)
        # Accessing .port validates the port component
        parsed.port
    except ValueError:
        return None

    if parsed.scheme.lower() not in CRAWLABLE_SCHEMES or not parsed.netloc:
        return None

    return absolute_url


class LinkExtractor:
    """
    Extracts anchor links from HTML documents.

    lxml recovers from broken markup, so malformed pages still yield a
    best-effort link list.
    """

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)

    def extract_hrefs(self, html_content: Union[bytes, str],
                      encoding: Optional[str] = None) -> List[str]:
        """Return the raw href value of every anchor, in document order."""
        kwargs = {}
        if encoding and isinstance(html_content, bytes):
            kwargs['from_encoding'] = encoding

        try:
            soup = BeautifulSoup(html_content, self.features, **kwargs)
        except Exception as e:
            raise LinkExtractionError(f"error parsing HTML: {e}") from e

        hrefs = []
        for anchor in soup.find_all('a', href=True):
            href = anchor['href']
            # Repeated attributes may surface as a list; the first one wins
            if isinstance(href, list):
                href = href[0] if href else ''
            hrefs.append(href)
        return hrefs

    def extract_links(self, base_url: str, html_content: Union[bytes, str],
                      encoding: Optional[str] = None) -> List[str]:
        """
        Extract and resolve links from a page.

        Args:
            base_url: URL the page was fetched from
            html_content: Raw HTML body
            encoding: Charset declared by the server, if any

        Returns:
            Absolute http(s) URLs in document order, duplicates included

        Raises:
            LinkExtractionError: if the document cannot be parsed at all
        """
        links = []
        for href in self.extract_hrefs(html_content, encoding):
            absolute_url = resolve_url(base_url, href)
            if absolute_url is not None:
                links.append(absolute_url)

        self.logger.debug(f"Extracted {len(links)} links from {base_url}")
        return links
