import gzip
import json
import os

import pytest

from shop_archiver.discovery.api import discover_from_api
from shop_archiver.discovery.engine import DiscoveryEngine, write_discovery_outputs
from shop_archiver.discovery.id_enum import build_product_urls, derive_range, enumerate_ids, extract_ids
from shop_archiver.discovery.patterns import learn_product_patterns, likely_product_url
from shop_archiver.discovery.sitemap import discover_from_sitemaps
from shop_archiver.discovery.targets import classify_url, read_seeds_file, targets_for_seeds_file
from shop_archiver.utils.config import ArchiverSettings

from conftest import SHOP, FakeHttpClient, html_page


SEED = f"{SHOP}/"


def urlset(*urls) -> str:
    locs = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{locs}</urlset>'


@pytest.mark.asyncio
async def test_shopify_api_pages_until_empty():
    client = FakeHttpClient()
    client.add_json(f"{SHOP}/products.json?limit=250&page=1", {"products": [{"handle": "green-tea"}, {"handle": "black-tea"}]})
    client.add_json(f"{SHOP}/products.json?limit=250&page=2", {"products": [{"handle": "white-tea"}]})
    client.add_json(f"{SHOP}/products.json?limit=250&page=3", {"products": []})

    urls = await discover_from_api(client, SEED)
    assert urls == [f"{SHOP}/products/green-tea", f"{SHOP}/products/black-tea", f"{SHOP}/products/white-tea"]


@pytest.mark.asyncio
async def test_api_cap_and_absent_api():
    client = FakeHttpClient()
    client.add_json(
        f"{SHOP}/wp-json/wc/store/v1/products?per_page=100&page=1",
        [{"permalink": f"{SHOP}/product/{i}"} for i in range(5)]
    )
    assert len(await discover_from_api(client, SEED, max_items=3)) == 3
    assert await discover_from_api(FakeHttpClient(), SEED) == []


@pytest.mark.asyncio
async def test_sitemaps_from_robots_with_nested_gzip():
    client = FakeHttpClient()
    client.add(f"{SHOP}/robots.txt", "User-agent: *\nDisallow: /cart\nSitemap: /sitemap_index.xml\n", content_type="text/plain")
    client.add(
        f"{SHOP}/sitemap_index.xml",
        '<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"<sitemap><loc>{SHOP}/sitemap-products.xml.gz</loc></sitemap>"
        f"<sitemap><loc>{SHOP}/sitemap-pages.xml</loc></sitemap>"
        "</sitemapindex>",
        content_type="application/xml"
    )
    client.add(
        f"{SHOP}/sitemap-products.xml.gz",
        gzip.compress(urlset(f"{SHOP}/product/1", f"{SHOP}/product/2").encode("utf-8")),
        content_type="application/gzip"
    )
    client.add(f"{SHOP}/sitemap-pages.xml", urlset(f"{SHOP}/about", f"{SHOP}/product/1"), content_type="application/xml")

    urls = await discover_from_sitemaps(client, SEED)
    assert urls == [f"{SHOP}/product/1", f"{SHOP}/product/2", f"{SHOP}/about"]


@pytest.mark.asyncio
async def test_sitemap_fallback_location():
    client = FakeHttpClient()
    client.add(f"{SHOP}/sitemap.xml", urlset(f"{SHOP}/a", f"{SHOP}/b", f"{SHOP}/c"), content_type="application/xml")
    assert await discover_from_sitemaps(client, SEED, max_urls=2) == [f"{SHOP}/a", f"{SHOP}/b"]


def test_product_url_heuristics():
    assert likely_product_url(f"{SHOP}/product/green-tea")
    assert likely_product_url(f"{SHOP}/index.php?route=product/product&product_id=42")
    assert likely_product_url(f"{SHOP}/item?id=7")
    assert likely_product_url(f"{SHOP}/teas/sencha")
    assert not likely_product_url(f"{SHOP}/about")
    assert not likely_product_url(f"{SHOP}/search?q=tea")


@pytest.mark.asyncio
async def test_pattern_learning_follows_listings():
    client = FakeHttpClient()
    client.add(SEED, html_page(["/category/tea", "/about"]))
    client.add(f"{SHOP}/category/tea", html_page(["/index.php?route=product/product&amp;product_id=42"]))
    candidates, bodies = await learn_product_patterns(client, SEED, sample_size=10)

    assert f"{SHOP}/category/tea" in candidates
    assert f"{SHOP}/index.php?route=product/product&product_id=42" in candidates
    assert f"{SHOP}/about" not in candidates
    assert len(bodies) == 2


def test_id_extraction_and_range():
    html = (
        '<a href="/index.php?route=product/product&amp;product_id=42">a</a>'
        '<div data-product-id="50"></div>'
    )
    ids, param = extract_ids(html)
    assert ids == {42, 50}
    assert param == "product_id"
    assert extract_ids('<a href="/p?id=9">x</a>') == ({9}, "id")

    assert derive_range({42, 50}, 2000) == (1, 250)
    assert derive_range({42, 50}, 100) == (1, 100)
    assert derive_range(set(), 100) is None
    assert build_product_urls(SEED, (7, 8)) == [
        f"{SHOP}/index.php?route=product%2Fproduct&product_id=7",
        f"{SHOP}/index.php?route=product%2Fproduct&product_id=8",
    ]


@pytest.mark.asyncio
async def test_id_enumeration_probe_keeps_live_ids():
    client = FakeHttpClient()
    live = build_product_urls(SEED, (3, 3))[0]
    client.add(live, html_page())
    urls = await enumerate_ids(client, SEED, [], max_range=10, id_range=(1, 50), delay=0, probe=True)

    assert urls == [live]
    assert len(client.requested) == 10


@pytest.mark.asyncio
async def test_waterfall_stops_at_target_count(tmp_path):
    client = FakeHttpClient()
    client.add_json(
        f"{SHOP}/products.json?limit=250&page=1",
        {"products": [{"handle": "a"}, {"handle": "b"}, {"handle": "c"}]}
    )
    settings = ArchiverSettings(target_count=3)
    engine = DiscoveryEngine(client, settings)
    targets = await engine.discover(SEED)

    assert [t.url for t in targets] == [SEED, f"{SHOP}/products/a", f"{SHOP}/products/b", f"{SHOP}/products/c"]
    assert targets[0].source == "seed"
    assert targets[0].classification == "home"
    assert {t.source for t in targets[1:]} == {"api"}
    assert not any("sitemap" in url for url in client.requested)


@pytest.mark.asyncio
async def test_failing_strategy_is_skipped(tmp_path):
    client = FakeHttpClient(errors=[f"{SHOP}/robots.txt"])
    client.add(SEED, html_page(["/about", "https://elsewhere.example.org/"]))
    client.add(f"{SHOP}/about", html_page())

    engine = DiscoveryEngine(
        client,
        ArchiverSettings(max_depth=1),
        strategies=["sitemap", "crawl"],
        output_dir=str(tmp_path)
    )
    targets = await engine.discover(SEED)
    assert [t.url for t in targets] == [SEED, f"{SHOP}/about"]
    assert targets[1].source == "crawl"
    assert targets[1].discovered_from == SEED

    urls_path = write_discovery_outputs(str(tmp_path), SEED, targets, engine)
    with open(urls_path, encoding="utf-8") as f:
        assert f.read().splitlines() == [SEED, f"{SHOP}/about"]
    assert os.path.exists(os.path.join(str(tmp_path), "_crawl", "graph.json"))

    # capture picks up depth and provenance from the sidecar
    loaded = targets_for_seeds_file(urls_path)
    assert loaded[1].source == "crawl"
    with open(os.path.join(str(tmp_path), "_crawl", "targets.json"), encoding="utf-8") as f:
        assert len(json.load(f)) == 2


@pytest.mark.asyncio
async def test_invalid_seed_is_rejected():
    with pytest.raises(ValueError):
        await DiscoveryEngine(FakeHttpClient()).discover("ftp://shop.example.com/")


def test_classification_and_seeds_file(tmp_path):
    assert classify_url(f"{SHOP}/") == "home"
    assert classify_url(f"{SHOP}/index.php?route=product/product&product_id=1") == "product"
    assert classify_url(f"{SHOP}/category/tea") == "category"
    assert classify_url(f"{SHOP}/privacy-policy") == "information"
    assert classify_url(f"{SHOP}/blog/post") == "other"

    seeds = tmp_path / "urls.txt"
    seeds.write_text(f"# seeds\n{SHOP}/a\n\n{SHOP}/b\n{SHOP}/a\n", encoding="utf-8")
    assert read_seeds_file(str(seeds)) == [f"{SHOP}/a", f"{SHOP}/b"]
