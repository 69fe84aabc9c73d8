#!/usr/bin/env python3
"""
Command-line runner for the crawl engine.
"""

import asyncio
import argparse
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from depthcrawler.crawler.scheduler import CrawlEngine, CrawlRun
from depthcrawler.utils.config import AppConfig, ConfigError, load_config
from depthcrawler.utils.logger import setup_logging
from depthcrawler.utils.monitoring import CrawlMetrics


class CrawlerApp:
    """Main application class for the crawler."""

    def __init__(self, out=None):
        self.run_handle: Optional[CrawlRun] = None
        self.logger = logging.getLogger(__name__)
        self.out = out or sys.stdout

    def setup_signal_handlers(self):
        """Cancel the crawl on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.run_handle:
                self.run_handle.cancel()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Windows event loops have no signal support
                pass

    async def run(self, config: AppConfig, seed_url: str) -> int:
        """Crawl from seed_url and print each result."""
        metrics = CrawlMetrics()
        if config.monitoring.metrics_enabled:
            metrics.start_server(config.monitoring.prometheus_port)

        engine = CrawlEngine(config.crawler, metrics=metrics)

        self.logger.info("=== CRAWLER STARTING ===")
        self.logger.info(f"Seed URL: {seed_url}")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Workers: {config.crawler.worker_count}")

        self.run_handle = engine.start(seed_url)
        self.setup_signal_handlers()

        async with self.run_handle:
            async for result in self.run_handle:
                if not result.ok:
                    self.logger.warning(f"Error crawling {result.url}: {result.error}")
                    continue

                print(f"Crawled: {result.url}", file=self.out)
                if result.links:
                    print(f"  Found {len(result.links)} links", file=self.out)

        state = "cancelled" if self.run_handle.cancelled else "completed"
        print(f"\nCrawling {state}! Visited {engine.visited_count} URLs.", file=self.out)
        return 0


def build_config(args: argparse.Namespace) -> AppConfig:
    """Load the YAML config (if any) and apply command-line overrides."""
    if args.config:
        config = load_config(args.config)
    else:
        config = AppConfig()

    overrides = {
        'worker_count': args.workers,
        'max_depth': args.depth,
        'request_delay': args.delay,
        'max_duration': args.max_duration,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if overrides:
        config.crawler = dataclasses.replace(config.crawler, **overrides)

    config.crawler.validate()
    return config


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Depth-bounded web crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py https://example.com/                      # Defaults
  python main.py --config config.yaml https://example.com/ # Settings from YAML
  python main.py --depth 1 --workers 10 https://example.com/
  python main.py --max-duration 30 https://example.com/    # Stop after 30 seconds
        """
    )

    parser.add_argument('seed_url', help='URL to start crawling from')
    parser.add_argument('--config', help='Path to a YAML configuration file')
    parser.add_argument('--workers', type=int, help='Number of concurrent workers')
    parser.add_argument('--depth', type=int, help='Maximum crawl depth')
    parser.add_argument('--delay', type=float, help='Delay before each request, in seconds')
    parser.add_argument('--max-duration', type=float, help='Maximum crawl time, in seconds')
    parser.add_argument('--version', action='version', version='Depth Crawler 1.0.0')

    args = parser.parse_args(argv)

    if args.config and not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config, args.seed_url))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
