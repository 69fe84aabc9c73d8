"""
Crawl engine: runs a fixed worker pool over the frontier and streams results.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .completion import CompletionTracker
from .fetcher import FetchError, WebFetcher, is_html_content
from .parser import CRAWLABLE_SCHEMES, LinkExtractionError, LinkExtractor
from .robots import RobotsCache
from .url_frontier import CrawlTask, URLFrontier
from ..storage.duplicate_detector import DuplicateDetector, normalize_url
from ..utils.config import EngineConfig
from ..utils.logger import CrawlerLogAdapter, get_crawler_logger
from ..utils.monitoring import CrawlMetrics


@dataclass(frozen=True)
class CrawlResult:
    """Outcome of one attempted fetch."""
    url: str
    links: Tuple[str, ...] = ()
    error: Optional[str] = None
    depth: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CrawlStats:
    """Statistics for a crawl run."""
    start_time: float
    urls_crawled: int = 0
    results_emitted: int = 0
    errors: int = 0
    robots_blocked: int = 0
    non_html: int = 0
    duplicates_skipped: int = 0
    overflow_dropped: int = 0
    malformed_skipped: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.urls_crawled / elapsed_minutes if elapsed_minutes > 0 else 0


_END_OF_STREAM = object()


class CrawlRun:
    """
    Handle for a started crawl.

    Iterate it asynchronously to receive CrawlResults; iteration ends when
    the crawl completes or is cancelled. cancel() aborts the run, including
    fetches in flight.
    """

    def __init__(self, engine: 'CrawlEngine', results: asyncio.Queue):
        self.engine = engine
        self.logger = logging.getLogger(__name__)
        self._results = results
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._cancel_requested = False
        self._exhausted = False
        self._error: Optional[BaseException] = None

    def _attach(self, task: asyncio.Task):
        self._task = task
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            self._error = task.exception()
            self.logger.error(f"Crawl aborted: {self._error!r}")

        self._closed = True
        try:
            self._results.put_nowait(_END_OF_STREAM)
        except asyncio.QueueFull:
            # The consumer is not waiting; it sees _closed once the buffer drains
            pass

    def __aiter__(self):
        return self

    async def __anext__(self) -> CrawlResult:
        if self._exhausted or (self._closed and self._results.empty()):
            return self._finish()

        item = await self._results.get()
        if item is _END_OF_STREAM:
            return self._finish()
        return item

    def _finish(self):
        self._exhausted = True
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def cancel(self):
        """Request cancellation of the run. Later calls are no-ops."""
        if self._cancel_requested:
            return
        if self._task is not None and not self._task.done():
            self._cancel_requested = True
            self.logger.info("Cancellation requested")
            self._task.cancel()

    async def wait(self):
        """Wait for the run to finish without consuming its results."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def aclose(self):
        """Cancel the run and wait for it to shut down."""
        self.cancel()
        await self.wait()

    async def collect(self) -> List[CrawlResult]:
        """Consume the whole stream into a list."""
        return [result async for result in self]

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()


class CrawlEngine:
    """
    Crawls from one seed URL to a bounded depth.

    Workers share one frontier, one visited registry and one robots cache.
    Each URL is fetched at most once per run; the result stream closes when
    no task is queued or being processed.
    """

    def __init__(self, config: EngineConfig, fetcher: Optional[WebFetcher] = None,
                 metrics: Optional[CrawlMetrics] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher
        self.metrics = metrics or CrawlMetrics()

        self.visited = DuplicateDetector()
        self.extractor = LinkExtractor()
        self.tracker = CompletionTracker()
        self.frontier: Optional[URLFrontier] = None
        self.robots: Optional[RobotsCache] = None

        self.stats = CrawlStats(start_time=time.time())
        self._results: Optional[asyncio.Queue] = None
        self._run: Optional[CrawlRun] = None

    @property
    def user_agent(self) -> str:
        return self.config.user_agent

    @property
    def visited_count(self) -> int:
        """Number of unique URLs claimed so far."""
        return len(self.visited)

    def start(self, seed_url: str) -> CrawlRun:
        """
        Start crawling from seed_url. Must be called from a running event loop.

        Raises:
            ConfigError: if the engine configuration is invalid
            RuntimeError: if this engine has already been started
        """
        self.config.validate()

        if self._run is not None:
            raise RuntimeError("CrawlEngine.start() can only be called once")

        if self.fetcher is None:
            self.fetcher = WebFetcher(
                user_agent=self.config.user_agent,
                request_timeout=self.config.timeout,
                max_content_bytes=self.config.max_content_bytes,
            )

        self.frontier = URLFrontier(self.config.queue_capacity)
        self.robots = RobotsCache(
            self.fetcher,
            self.config.user_agent,
            default_crawl_delay=self.config.default_crawl_delay,
            robots_timeout=self.config.robots_timeout,
        )
        self._results = asyncio.Queue(maxsize=self.config.result_buffer)

        run = CrawlRun(self, self._results)
        run._attach(asyncio.get_running_loop().create_task(self._supervise(run, seed_url)))
        self._run = run
        return run

    async def _supervise(self, run: CrawlRun, seed_url: str):
        """Run the worker pool until quiescence or cancellation."""
        self.stats = CrawlStats(start_time=time.time())
        loop = asyncio.get_running_loop()
        workers: List[asyncio.Task] = []
        reporter: Optional[asyncio.Task] = None
        deadline = None

        if self.config.max_duration:
            deadline = loop.call_later(self.config.max_duration, run.cancel)

        try:
            if self._owns_fetcher:
                await self.fetcher.start()

            if not await self._enqueue_seed(seed_url):
                return

            workers = [
                asyncio.create_task(self._worker(f"worker-{i}"))
                for i in range(self.config.worker_count)
            ]
            if self.config.stats_interval > 0:
                reporter = asyncio.create_task(self._stats_reporter())

            self.logger.info(
                f"Started crawling {seed_url} with {self.config.worker_count} workers, "
                f"max depth {self.config.max_depth}, delay {self.config.request_delay}s"
            )
            self.logger.info(f"User-Agent: {self.user_agent}")

            await self.tracker.wait_drained()
            await self.frontier.close()
            await asyncio.gather(*workers)

        except asyncio.CancelledError:
            self.logger.info("Crawl cancelled, stopping workers")
            raise

        finally:
            if deadline is not None:
                deadline.cancel()
            try:
                await self._cleanup_tasks(workers + ([reporter] if reporter else []))
            finally:
                if self._owns_fetcher and self.fetcher:
                    await self.fetcher.close()
                self.tracker.close()
                self._log_final_stats()

    async def _cleanup_tasks(self, tasks: List[asyncio.Task]):
        """Cancel and wait for worker and reporter tasks."""
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _enqueue_seed(self, seed_url: str) -> bool:
        try:
            normalize_url(seed_url)
            scheme = seed_url.strip().split(':', 1)[0].lower()
        except ValueError:
            scheme = ''

        if scheme not in CRAWLABLE_SCHEMES:
            self.stats.malformed_skipped += 1
            self.logger.warning(f"Skipping malformed seed URL: {seed_url!r}")
            return False

        return await self._enqueue(CrawlTask(url=seed_url.strip(), depth=0))

    async def _enqueue(self, task: CrawlTask) -> bool:
        """Put a task on the frontier, counting it as in flight."""
        self.tracker.task_added()
        if await self.frontier.enqueue(task):
            self.metrics.set_queue_size(self.frontier.qsize())
            return True

        self.tracker.task_finished()
        return False

    async def _worker(self, worker_id: str):
        """
        Worker coroutine that processes tasks until the frontier closes.
        """
        log = get_crawler_logger(__name__, worker=worker_id)
        log.debug(f"Worker {worker_id} started")

        while True:
            task = await self.frontier.dequeue()
            if task is None:
                break

            self.metrics.set_queue_size(self.frontier.qsize())
            self.metrics.worker_started()
            try:
                await self._process_task(task, log)
            except Exception as e:
                self.stats.errors += 1
                log.log_url_event(logging.ERROR, task.url,
                                  f"Worker {worker_id} error processing {task.url}: {e}",
                                  exc_info=True)
            finally:
                self.metrics.worker_finished()
                # Children were enqueued above, so this cannot close the run early
                self.tracker.task_finished()

        log.debug(f"Worker {worker_id} finished")

    async def _process_task(self, task: CrawlTask, log: CrawlerLogAdapter):
        """Claim, pace, check robots, fetch, extract and enqueue children."""
        if task.depth > self.config.max_depth:
            log.debug(f"Skipping URL beyond max depth: {task.url}")
            return

        try:
            url = normalize_url(task.url)
        except ValueError:
            self.stats.malformed_skipped += 1
            log.debug(f"Skipping malformed URL: {task.url!r}")
            return

        if not self.visited.try_claim(url):
            self.stats.duplicates_skipped += 1
            self.metrics.record_duplicate()
            return

        if self.config.request_delay > 0:
            await asyncio.sleep(self.config.request_delay)

        rules = await self.robots.rules_for(url)
        if not rules.is_allowed(url):
            self.stats.robots_blocked += 1
            log.log_url_event(logging.INFO, url, f"Robots.txt blocks access to: {url}")
            await self._emit(CrawlResult(url=url, error=f"disallowed by robots.txt: {url}",
                                         depth=task.depth), 'robots_blocked')
            return

        await rules.await_turn()

        try:
            fetch_result = await self.fetcher.fetch(url, read_body=is_html_content)
        except FetchError as e:
            self.stats.errors += 1
            await self._emit(CrawlResult(url=url, error=str(e), depth=task.depth), 'error')
            return

        self.stats.urls_crawled += 1
        self.metrics.observe_fetch(fetch_result.fetch_time)

        if not fetch_result.ok:
            self.stats.errors += 1
            log.log_url_event(logging.WARNING, url,
                              f"Failed to fetch {url}: status {fetch_result.status_code}")
            await self._emit(CrawlResult(
                url=url,
                error=f"unexpected status code {fetch_result.status_code} for {url}",
                depth=task.depth,
            ), 'error')
            return

        if not fetch_result.is_html:
            self.stats.non_html += 1
            await self._emit(CrawlResult(url=url, depth=task.depth), 'non_html')
            return

        try:
            links = self.extractor.extract_links(
                fetch_result.url, fetch_result.content, fetch_result.encoding
            )
        except LinkExtractionError as e:
            self.stats.errors += 1
            await self._emit(CrawlResult(url=url, error=str(e), depth=task.depth), 'error')
            return

        await self._emit(CrawlResult(url=url, links=tuple(links), depth=task.depth), 'ok')

        if task.depth < self.config.max_depth:
            await self._queue_links(links, task.depth + 1, log)

    async def _queue_links(self, links: List[str], depth: int, log: CrawlerLogAdapter):
        """Queue child tasks; duplicates are filtered when they are dequeued."""
        queued = 0
        for link in links:
            if await self._enqueue(CrawlTask(url=link, depth=depth)):
                queued += 1
                continue

            if self.frontier.closed:
                return

            await self._report_overflow(link, depth)

        log.debug(f"Queued {queued} of {len(links)} links at depth {depth}")

    async def _report_overflow(self, link: str, depth: int):
        """Report a link dropped by a full frontier, once per URL."""
        try:
            url = normalize_url(link)
        except ValueError:
            return

        # A URL that is already claimed has its own result
        if not self.visited.try_claim(url):
            return

        self.stats.overflow_dropped += 1
        await self._emit(CrawlResult(url=url, error=f"frontier full, dropped {url}",
                                     depth=depth), 'overflow')

    async def _emit(self, result: CrawlResult, outcome: str):
        """Publish a result to the consumer, waiting if its buffer is full."""
        await self._results.put(result)
        self.stats.results_emitted += 1
        self.metrics.record_result(outcome)
        self.logger.debug(f"Result for {result.url}: {outcome}"
                          + (f" ({result.error})" if result.error else
                             f", {len(result.links)} links"))

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while True:
            await asyncio.sleep(self.config.stats_interval)
            self._log_current_stats()

    def _log_current_stats(self):
        self.logger.info(
            f"Crawl Progress: "
            f"Crawled={self.stats.urls_crawled}, "
            f"Results={self.stats.results_emitted}, "
            f"Visited={self.visited_count}, "
            f"Queued={self.frontier.qsize() if self.frontier else 0}, "
            f"InFlight={self.tracker.in_flight}, "
            f"Errors={self.stats.errors}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    def _log_final_stats(self):
        self.logger.info("=== CRAWL FINISHED ===")
        self.logger.info(f"Total URLs crawled: {self.stats.urls_crawled}")
        self.logger.info(f"Results emitted: {self.stats.results_emitted}")
        self.logger.info(f"Unique URLs visited: {self.visited_count}")
        self.logger.info(f"Robots blocked: {self.stats.robots_blocked}")
        self.logger.info(f"Duplicates skipped: {self.stats.duplicates_skipped}")
        self.logger.info(f"Frontier overflow: {self.stats.overflow_dropped}")
        self.logger.info(f"Errors: {self.stats.errors}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        if self.fetcher:
            self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        if self.robots:
            self.logger.info(f"Robots stats: {self.robots.get_stats()}")

    def get_stats(self) -> Dict[str, Any]:
        """Get current crawl statistics."""
        return {
            'urls_crawled': self.stats.urls_crawled,
            'results_emitted': self.stats.results_emitted,
            'errors': self.stats.errors,
            'robots_blocked': self.stats.robots_blocked,
            'non_html': self.stats.non_html,
            'duplicates_skipped': self.stats.duplicates_skipped,
            'overflow_dropped': self.stats.overflow_dropped,
            'malformed_skipped': self.stats.malformed_skipped,
            'visited_count': self.visited_count,
            'urls_in_queue': self.frontier.qsize() if self.frontier else 0,
            'in_flight': self.tracker.in_flight,
            'state': self.tracker.state.value,
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
        }


def start(seed_url: str, config: EngineConfig, fetcher: Optional[WebFetcher] = None,
          metrics: Optional[CrawlMetrics] = None) -> CrawlRun:
    """Create an engine for config and start crawling from seed_url."""
    return CrawlEngine(config, fetcher=fetcher, metrics=metrics).start(seed_url)
