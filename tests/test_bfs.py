import json
import os

import pytest

from shop_archiver.discovery.bfs import LinkCrawler, stop_file_for, write_crawl_outputs
from shop_archiver.utils.domain import SameSitePolicy

from conftest import SHOP, FakeHttpClient, html_page


SEED = f"{SHOP}/"


def shop_with_fanout(count=10):
    client = FakeHttpClient()
    client.add(SEED, html_page([f"/p{i}" for i in range(1, count + 1)] + ["https://other.example.org/x"]))
    for i in range(1, count + 1):
        client.add(f"{SHOP}/p{i}", html_page([f"/p{i}/child"]))
    return client


def crawler(client, **kwargs):
    return LinkCrawler(client, same_site=SameSitePolicy([SEED]), **kwargs)


@pytest.mark.asyncio
async def test_page_budget_and_fetch_order(tmp_path):
    client = shop_with_fanout()
    result = await crawler(client, max_pages=3, max_depth=1).crawl([SEED])

    assert result.fetched == [SEED, f"{SHOP}/p1", f"{SHOP}/p2"]
    assert len(client.requested) == 3

    write_crawl_outputs(str(tmp_path), result, [SEED])
    with open(os.path.join(str(tmp_path), "_crawl", "urls.txt"), encoding="utf-8") as f:
        assert f.read().splitlines() == result.fetched


@pytest.mark.asyncio
async def test_depth_limit():
    client = shop_with_fanout(count=2)
    result = await crawler(client, max_pages=100, max_depth=1).crawl([SEED])

    assert result.fetched == [SEED, f"{SHOP}/p1", f"{SHOP}/p2"]
    assert all(result.depths[url] <= 1 for url in result.fetched)
    assert f"{SHOP}/p1/child" not in client.requested


@pytest.mark.asyncio
async def test_depth_zero_fetches_seeds_only():
    client = shop_with_fanout()
    result = await crawler(client, max_pages=100, max_depth=0).crawl([SEED])
    assert result.fetched == [SEED]


@pytest.mark.asyncio
async def test_failures_do_not_consume_budget():
    client = FakeHttpClient()
    client.add(SEED, html_page(["/broken", "/ok1", "/ok2"]))
    client.add(f"{SHOP}/ok1", html_page())
    client.add(f"{SHOP}/ok2", html_page())
    result = await crawler(client, max_pages=3, max_depth=1).crawl([SEED])

    assert result.fetched == [SEED, f"{SHOP}/ok1", f"{SHOP}/ok2"]
    assert result.errors == [{"url": f"{SHOP}/broken", "error": "404"}]


@pytest.mark.asyncio
async def test_stop_file_and_diagnostics(tmp_path):
    client = shop_with_fanout()
    stop_file = stop_file_for(str(tmp_path))
    os.makedirs(os.path.dirname(stop_file))
    with open(stop_file, "w") as f:
        f.write("")

    result = await crawler(client, stop_file=stop_file).crawl([SEED])
    assert result.fetched == []
    assert result.stopped_early

    crawl_dir = write_crawl_outputs(str(tmp_path), result, [SEED], {"max_pages": 200})
    with open(os.path.join(crawl_dir, "report.json"), encoding="utf-8") as f:
        report = json.load(f)
    assert report["stoppedEarly"] is True
    assert report["pagesCrawled"] == 0
    with open(os.path.join(crawl_dir, "graph.json"), encoding="utf-8") as f:
        graph = json.load(f)
    assert graph["nodes"] == [{"url": SEED, "depth": 0, "crawled": False}]
