"""
Crawl engine components.
"""

from .url_frontier import URLFrontier, CrawlTask
from .fetcher import WebFetcher, FetchResult, FetchError
from .parser import LinkExtractor, LinkExtractionError, resolve_url
from .robots import RobotRules, RobotsCache
from .completion import CompletionTracker, CrawlState
from .scheduler import CrawlEngine, CrawlResult, CrawlRun, CrawlStats, start

__all__ = [
    'URLFrontier', 'CrawlTask',
    'WebFetcher', 'FetchResult', 'FetchError',
    'LinkExtractor', 'LinkExtractionError', 'resolve_url',
    'RobotRules', 'RobotsCache',
    'CompletionTracker', 'CrawlState',
    'CrawlEngine', 'CrawlResult', 'CrawlRun', 'CrawlStats', 'start',
]
