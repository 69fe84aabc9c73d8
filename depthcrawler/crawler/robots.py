"""
robots.txt handling: rule parsing, path matching and per-host pacing.
"""

import asyncio
import logging
import math
import re
from typing import Dict, List, Optional, Pattern
from urllib.parse import urlparse

from .fetcher import FetchError, WebFetcher


DEFAULT_CRAWL_DELAY = 1.0


class RobotRules:
    """
    Rules from one host's robots.txt that apply to our user agent.

    Holds the disallow patterns, the effective crawl delay and the time of
    the last request made to the host.
    """

    def __init__(self, user_agent: str, crawl_delay: float = DEFAULT_CRAWL_DELAY):
        self.user_agent = user_agent
        self.default_crawl_delay = crawl_delay
        self.crawl_delay = crawl_delay
        self.disallow_patterns: List[Pattern] = []
        self.last_access: Optional[float] = None
        self._turn_lock = asyncio.Lock()

    def parse(self, content: str):
        """Replace the current rules with those parsed from robots.txt content."""
        self.disallow_patterns = []
        self.crawl_delay = self.default_crawl_delay

        applies = False
        in_agent_lines = False

        for raw_line in content.splitlines():
            line = raw_line.split('#', 1)[0].strip()
            if not line or ':' not in line:
                continue

            directive, value = line.split(':', 1)
            directive = directive.strip().lower()
            value = value.strip()

            if directive == 'user-agent':
                # Consecutive User-agent lines share one group of rules
                matched = self._agent_matches(value)
                applies = matched or (applies and in_agent_lines)
                in_agent_lines = True
                continue

            in_agent_lines = False
            if not applies:
                continue

            if directive == 'disallow':
                if not value:
                    continue  # Empty disallow means allow all
                self.disallow_patterns.append(self._compile_pattern(value))

            elif directive == 'crawl-delay':
                try:
                    seconds = float(value)
                except ValueError:
                    continue
                if math.isfinite(seconds) and seconds > 0:
                    self.crawl_delay = seconds

    def _agent_matches(self, value: str) -> bool:
        if not value:
            return False
        return value == '*' or value.lower() in self.user_agent.lower()

    @staticmethod
    def _compile_pattern(path: str) -> Pattern:
        pattern = '^' + re.escape(path).replace(r'\*', '.*')
        return re.compile(pattern)

    @staticmethod
    def _match_path(url: str) -> str:
        path = urlparse(url).path or '/'
        last_segment = path.rsplit('/', 1)[-1]
        # Extension-less paths are treated as directories
        if not path.endswith('/') and '.' not in last_segment:
            path += '/'
        return path

    def is_allowed(self, url: str) -> bool:
        """Check whether a URL may be fetched under these rules."""
        try:
            path = self._match_path(url)
        except ValueError:
            return False

        return not any(pattern.match(path) for pattern in self.disallow_patterns)

    async def await_turn(self):
        """
        Wait until crawl_delay has passed since the last request to this host,
        then record a new access time.
        """
        loop = asyncio.get_running_loop()
        async with self._turn_lock:
            if self.last_access is not None:
                remaining = self.crawl_delay - (loop.time() - self.last_access)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self.last_access = loop.time()


class RobotsCache:
    """
    Per-host cache of RobotRules.

    robots.txt is fetched at most once per host; concurrent first requests
    for the same host wait on a per-host lock for the single fetch.
    """

    def __init__(self, fetcher: WebFetcher, user_agent: str,
                 default_crawl_delay: float = DEFAULT_CRAWL_DELAY,
                 robots_timeout: Optional[float] = None):
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.default_crawl_delay = default_crawl_delay
        self.robots_timeout = robots_timeout
        self.logger = logging.getLogger(__name__)

        self._rules: Dict[str, RobotRules] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        self.stats = {
            'robots_fetched': 0,
            'robots_fallbacks': 0,
        }

    @staticmethod
    def host_key(url: str) -> str:
        parsed = urlparse(url)
        if not parsed.netloc:
            raise ValueError(f"invalid host in URL: {url}")
        return parsed.netloc.lower()

    async def rules_for(self, url: str) -> RobotRules:
        """Return the cached rules for the URL's host, fetching robots.txt on first use."""
        host = self.host_key(url)

        rules = self._rules.get(host)
        if rules is not None:
            return rules

        lock = self._locks.setdefault(host, asyncio.Lock())
        async with lock:
            rules = self._rules.get(host)
            if rules is None:
                scheme = urlparse(url).scheme.lower()
                rules = await self._load_rules(f"{scheme}://{host}/robots.txt")
                self._rules[host] = rules

        return rules

    async def _load_rules(self, robots_url: str) -> RobotRules:
        rules = RobotRules(self.user_agent, self.default_crawl_delay)

        try:
            result = await self.fetcher.fetch(robots_url, timeout=self.robots_timeout)
        except FetchError as e:
            # If we can't fetch robots.txt, allow by default
            self.stats['robots_fallbacks'] += 1
            self.logger.warning(f"Could not fetch {robots_url}: {e}")
            return rules

        self.stats['robots_fetched'] += 1

        if result.status_code == 200 and result.content:
            rules.parse(result.text())
            self.logger.debug(
                f"Parsed {robots_url}: {len(rules.disallow_patterns)} disallow rules, "
                f"crawl-delay {rules.crawl_delay}s"
            )
        else:
            self.stats['robots_fallbacks'] += 1
            self.logger.debug(f"No usable robots.txt at {robots_url} (status {result.status_code})")

        return rules

    def cached_hosts(self) -> List[str]:
        return list(self._rules)

    def get_stats(self) -> Dict[str, int]:
        return {**self.stats, 'hosts_cached': len(self._rules)}
