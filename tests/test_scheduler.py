"""End-to-end tests for the crawl engine against in-process sites."""

import asyncio
import dataclasses
import time
from collections import Counter
from unittest.mock import patch

import pytest

from depthcrawler.crawler.completion import CrawlState
from depthcrawler.crawler.parser import LinkExtractionError
from depthcrawler.crawler.scheduler import CrawlEngine, CrawlResult, start
from depthcrawler.utils.config import ConfigError


async def crawl(config, seed_url, **overrides):
    """Run a crawl to completion and return the engine and its results."""
    engine = CrawlEngine(dataclasses.replace(config, **overrides))
    run = engine.start(seed_url)
    results = await asyncio.wait_for(run.collect(), timeout=15)
    return engine, {result.url: result for result in results}, results


class TestCrawlResult:

    def test_ok_tracks_error(self):
        assert CrawlResult(url="https://example.com/").ok
        assert not CrawlResult(url="https://example.com/", error="request timeout for https://example.com/").ok


class TestCrawlScenarios:

    async def test_depth_one_with_duplicate_and_cross_host_links(self, site, other_site, fast_config):
        site.add_links("/", "/a", "/a", other_site.url("/b"))
        site.add_links("/a", "/deeper")
        other_site.add_links("/b", "/c")

        engine, by_url, results = await crawl(fast_config, site.url("/"), max_depth=1)

        assert sorted(by_url) == sorted([site.url("/"), site.url("/a"), other_site.url("/b")])
        assert len(results) == 3
        assert all(result.ok for result in results)
        assert by_url[site.url("/")].links == (site.url("/a"), site.url("/a"), other_site.url("/b"))
        assert by_url[other_site.url("/b")].depth == 1
        assert site.hits("/a") and len(site.hits("/a")) == 1
        assert site.hits("/deeper") == []
        assert other_site.hits("/c") == []
        assert engine.visited_count == 3

    async def test_depth_bound_on_a_chain(self, site, fast_config):
        for i in range(5):
            site.add_links(f"/{i}" if i else "/", f"/{i + 1}")

        _, by_url, results = await crawl(fast_config, site.url("/"), max_depth=2)

        assert sorted(by_url) == sorted([site.url("/"), site.url("/1"), site.url("/2")])
        assert max(result.depth for result in results) == 2
        assert site.hits("/3") == []

    async def test_depth_zero_fetches_only_the_seed(self, site, fast_config):
        site.add_links("/", "/a", "/b")

        _, by_url, _ = await crawl(fast_config, site.url("/"), max_depth=0)

        assert list(by_url) == [site.url("/")]
        assert site.hits("/a") == []

    async def test_each_url_fetched_once_under_concurrent_discovery(self, site, fast_config):
        site.add_links("/", "/p1", "/p2", "/p3", "/shared")
        for page in ("/p1", "/p2", "/p3"):
            site.add_links(page, "/shared", "/p1", "/p2", "/p3", "/#fragment", "/")
        site.add_links("/shared", "/p1", "/")

        engine, by_url, results = await crawl(fast_config, site.url("/"), max_depth=3,
                                              worker_count=8)

        counts = Counter(result.url for result in results)
        assert all(count == 1 for count in counts.values())
        assert len(results) == 5
        assert len(site.hits("/shared")) == 1
        assert len(site.hits("/")) == 1
        assert engine.get_stats()['duplicates_skipped'] > 0

    async def test_robots_block_and_crawl_delay(self, site, fast_config):
        site.add("/robots.txt", "User-agent: *\nDisallow: /private\nCrawl-delay: 2\n",
                 content_type="text/plain")
        site.add_links("/", "/private/page", "/public")
        site.add("/public", "<html>public</html>")
        site.add("/private/page", "<html>secret</html>")

        engine, by_url, _ = await crawl(fast_config, site.url("/"), max_depth=1)

        blocked = by_url[site.url("/private/page")]
        assert "disallowed by robots.txt" in blocked.error
        assert blocked.links == ()
        assert site.hits("/private/page") == []

        assert by_url[site.url("/public")].ok
        assert site.hits("/public")[0] - site.hits("/")[0] >= 1.9
        assert len(site.hits("/robots.txt")) == 1
        assert engine.get_stats()['robots_blocked'] == 1

    async def test_per_host_spacing_under_concurrent_workers(self, site, fast_config):
        site.add("/robots.txt", "User-agent: *\nCrawl-delay: 0.3\n", content_type="text/plain")
        site.add_links("/", "/1", "/2", "/3")
        for i in (1, 2, 3):
            site.add(f"/{i}", "<html></html>")

        await crawl(fast_config, site.url("/"), max_depth=1, worker_count=4)

        starts = sorted(at for path, at in site.requests if path != "/robots.txt")
        assert len(starts) == 4
        gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
        assert min(gaps) >= 0.28

    async def test_server_error_reported_and_siblings_processed(self, site, fast_config):
        site.add_links("/", "/broken", "/ok1", "/ok2")
        site.add("/broken", "<a href='/never'>x</a>", status=500)
        site.add("/ok1", "<html></html>")
        site.add("/ok2", "<html></html>")

        _, by_url, _ = await crawl(fast_config, site.url("/"))

        broken = by_url[site.url("/broken")]
        assert broken.error == f"unexpected status code 500 for {site.url('/broken')}"
        assert broken.links == ()
        assert by_url[site.url("/ok1")].ok
        assert by_url[site.url("/ok2")].ok
        assert site.hits("/never") == []

    async def test_missing_page_is_an_error_result(self, site, fast_config):
        site.add_links("/", "/gone")

        _, by_url, _ = await crawl(fast_config, site.url("/"))

        assert "404" in by_url[site.url("/gone")].error

    async def test_non_html_is_a_leaf_without_error(self, site, fast_config):
        site.add_links("/", "/report.pdf")
        site.add("/report.pdf", b"%PDF-1.4 <a href='/x'>", content_type="application/pdf")

        engine, by_url, _ = await crawl(fast_config, site.url("/"))

        leaf = by_url[site.url("/report.pdf")]
        assert leaf.ok
        assert leaf.links == ()
        assert engine.get_stats()['non_html'] == 1

    async def test_fetch_failure_is_an_error_result(self, site, fast_config):
        site.add_links("/", "http://127.0.0.1:1/unreachable", "/fine")
        site.add("/fine", "<html></html>")

        _, by_url, _ = await crawl(fast_config, site.url("/"), robots_timeout=1.0)

        assert "error fetching" in by_url["http://127.0.0.1:1/unreachable"].error
        assert by_url[site.url("/fine")].ok

    async def test_parse_failure_is_an_error_result(self, site, fast_config):
        site.add("/", "<html></html>")
        engine = CrawlEngine(fast_config)

        with patch.object(engine.extractor, "extract_links",
                          side_effect=LinkExtractionError("error parsing HTML: broken")):
            results = await asyncio.wait_for(engine.start(site.url("/")).collect(), timeout=10)

        assert results == [CrawlResult(url=site.url("/"), error="error parsing HTML: broken")]

    async def test_frontier_overflow_reported_once_per_url(self, site, fast_config):
        site.add_links("/", "/a", "/b", "/c", "/b")
        for page in ("/a", "/b", "/c"):
            site.add(page, "<html></html>")

        engine, by_url, results = await crawl(fast_config, site.url("/"), max_depth=1,
                                              worker_count=1, queue_capacity=1)

        assert by_url[site.url("/a")].ok
        assert by_url[site.url("/b")].error.startswith("frontier full")
        assert by_url[site.url("/c")].error.startswith("frontier full")
        assert len(results) == 4
        assert site.hits("/b") == []
        assert engine.get_stats()['overflow_dropped'] == 2

    async def test_request_delay_paces_every_fetch(self, site, fast_config):
        site.add_links("/", "/1", "/2")
        site.add("/1", "<html></html>")
        site.add("/2", "<html></html>")

        started = time.monotonic()
        await crawl(fast_config, site.url("/"), worker_count=1, request_delay=0.2)

        assert time.monotonic() - started >= 0.55

    async def test_metrics_track_outcomes(self, site, fast_config):
        site.add_links("/", "/a", "/missing")
        site.add("/a", "<html></html>")

        engine, _, _ = await crawl(fast_config, site.url("/"))

        counts = engine.metrics.result_counts()
        assert counts['ok'] == 2
        assert counts['error'] == 1
        assert b"crawler_results_total" in engine.metrics.export()


class TestCrawlLifecycle:

    async def test_stream_closes_and_state_is_closed(self, site, fast_config):
        site.add("/", "<html></html>")
        engine = CrawlEngine(fast_config)

        run = engine.start(site.url("/"))
        results = await asyncio.wait_for(run.collect(), timeout=10)

        assert len(results) == 1
        assert run.done and not run.cancelled
        assert engine.get_stats()['state'] == 'closed'
        assert engine.get_stats()['in_flight'] == 0
        assert [r async for r in run] == []

    async def test_cancel_stops_promptly(self, site, fast_config):
        site.add_links("/", "/slow1", "/slow2")
        site.add("/slow1", "<html></html>", delay=3)
        site.add("/slow2", "<html></html>", delay=3)

        run = start(site.url("/"), fast_config)
        first = await asyncio.wait_for(run.__anext__(), timeout=5)
        assert first.url == site.url("/")

        await asyncio.sleep(0.2)
        started = time.monotonic()
        run.cancel()
        remaining = await asyncio.wait_for(run.collect(), timeout=3)

        assert time.monotonic() - started < 2
        assert remaining == []
        assert run.cancelled

    async def test_repeated_cancel_still_releases_resources(self, site, fast_config):
        site.add_links("/", "/slow")
        site.add("/slow", "<html></html>", delay=3)
        engine = CrawlEngine(fast_config)

        run = engine.start(site.url("/"))
        await asyncio.wait_for(run.__anext__(), timeout=5)
        run.cancel()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        run.cancel()
        await asyncio.wait_for(run.wait(), timeout=3)

        assert run.cancelled
        assert engine.fetcher.session is None
        assert engine.tracker.state is CrawlState.CLOSED

    async def test_max_duration_cancels_run(self, site, fast_config):
        site.add("/", "<html></html>", delay=3)

        engine, by_url, _ = await crawl(fast_config, site.url("/"), max_duration=0.3)

        assert by_url == {}
        assert engine.get_stats()['state'] == 'closed'

    async def test_leaving_the_context_cancels(self, site, fast_config):
        site.add_links("/", "/slow")
        site.add("/slow", "<html></html>", delay=3)

        run = start(site.url("/"), fast_config)
        async with run:
            async for _ in run:
                break

        assert run.done

    async def test_malformed_seed_yields_empty_stream(self, fast_config):
        engine = CrawlEngine(fast_config)

        results = await asyncio.wait_for(engine.start("not a url").collect(), timeout=5)

        assert results == []
        assert engine.get_stats()['malformed_skipped'] == 1

    async def test_non_http_seed_yields_empty_stream(self, fast_config):
        results = await asyncio.wait_for(start("ftp://example.com/", fast_config).collect(),
                                         timeout=5)
        assert results == []

    async def test_invalid_config_fails_fast(self, fast_config):
        engine = CrawlEngine(dataclasses.replace(fast_config, worker_count=0))

        with pytest.raises(ConfigError):
            engine.start("http://example.com/")
        assert engine.frontier is None

    async def test_wrongly_typed_config_fails_fast(self, fast_config):
        engine = CrawlEngine(dataclasses.replace(fast_config, worker_count=2.5))

        with pytest.raises(ConfigError, match="worker_count"):
            engine.start("http://example.com/")

    async def test_start_only_once(self, site, fast_config):
        site.add("/", "<html></html>")
        engine = CrawlEngine(fast_config)
        run = engine.start(site.url("/"))

        with pytest.raises(RuntimeError):
            engine.start(site.url("/"))
        await run.collect()

    async def test_accessors(self, site, fast_config):
        site.add_links("/", "/a")
        site.add("/a", "<html></html>")
        engine = CrawlEngine(dataclasses.replace(fast_config, user_agent="TestBot/0.1"))

        assert engine.user_agent == "TestBot/0.1"
        assert engine.visited_count == 0

        await engine.start(site.url("/")).collect()

        assert engine.visited_count == 2
        assert set(site.user_agents) == {"TestBot/0.1"}
