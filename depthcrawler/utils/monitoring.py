"""
Metrics collection for the crawl engine.
"""

import logging
from typing import Dict, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)


RESULT_OUTCOMES = ('ok', 'non_html', 'error', 'robots_blocked', 'overflow')


class CrawlMetrics:
    """Prometheus metrics for one crawl engine, kept in a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()

        self.results_total = Counter(
            'crawler_results_total',
            'Crawl results emitted, by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.duplicates_suppressed_total = Counter(
            'crawler_duplicates_suppressed_total',
            'Tasks dropped because their URL was already claimed',
            registry=self.registry
        )
        self.fetch_seconds = Histogram(
            'crawler_fetch_seconds',
            'Time spent on page fetches',
            registry=self.registry
        )
        self.queue_size = Gauge(
            'crawler_queue_size',
            'Tasks waiting in the frontier',
            registry=self.registry
        )
        self.active_workers = Gauge(
            'crawler_active_workers',
            'Workers currently processing a task',
            registry=self.registry
        )

        # Pre-create label children so every outcome is exported from the start
        for outcome in RESULT_OUTCOMES:
            self.results_total.labels(outcome=outcome)

    def record_result(self, outcome: str):
        if outcome not in RESULT_OUTCOMES:
            raise ValueError(f"Unknown result outcome: {outcome}")
        self.results_total.labels(outcome=outcome).inc()

    def record_duplicate(self):
        self.duplicates_suppressed_total.inc()

    def observe_fetch(self, seconds: float):
        self.fetch_seconds.observe(seconds)

    def set_queue_size(self, size: int):
        self.queue_size.set(size)

    def worker_started(self):
        self.active_workers.inc()

    def worker_finished(self):
        self.active_workers.dec()

    def result_counts(self) -> Dict[str, int]:
        """Current value of the results counter per outcome."""
        counts = {}
        for outcome in RESULT_OUTCOMES:
            value = self.registry.get_sample_value(
                'crawler_results_total', {'outcome': outcome}
            )
            counts[outcome] = int(value or 0)
        return counts

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    def start_server(self, port: int):
        """Expose the registry over HTTP on the given port."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")
