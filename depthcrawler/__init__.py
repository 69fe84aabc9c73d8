"""
Depth Crawler

A bounded-depth, robots.txt-aware web crawl engine.
"""

__version__ = "1.0.0"
__description__ = "A polite, depth-bounded concurrent web crawl engine"

from .crawler import CrawlEngine, CrawlResult, CrawlRun, start
from .utils.config import EngineConfig, ConfigError

__all__ = ['CrawlEngine', 'CrawlResult', 'CrawlRun', 'start', 'EngineConfig', 'ConfigError']
