import json
import os

import pytest

from shop_archiver.crawler.fingerprint import fingerprint
from shop_archiver.utils.paths import UrlNormalizer
from shop_archiver.web.resolver import ArchiveResolver, build_snapshot, strip_query_slug_folder

from conftest import SHOP, write_file


TEACUP = f"{SHOP}/image/teacup.png"


@pytest.fixture
def run_root(tmp_path):
    write_file(tmp_path, "category/tea/index.html", "<html><body>tea</body></html>")
    write_file(tmp_path, "shoes/desktop/index.html", "desktop shoes")
    write_file(tmp_path, "shoes/mobile/index.html", "mobile shoes")
    write_file(tmp_path, "index.php__product_id_42__route_product_product/index.html", "product 42")
    write_file(tmp_path, "static/css/site.css", "body{}")
    write_file(tmp_path, "assets/" + fingerprint(TEACUP), b"png")
    write_file(tmp_path, "manifest.json", json.dumps([
        {"url": f"{SHOP}/category/tea", "localPath": "category/tea", "status": "ok"},
    ]))
    return tmp_path


def resolver(root, **kwargs):
    return ArchiveResolver(build_snapshot(str(root)), **kwargs)


def rel(root, path):
    return os.path.relpath(path, str(root)).replace(os.sep, "/")


def test_uncaptured_child_falls_back_to_captured_parent(run_root):
    hit = resolver(run_root).resolve_html("/category/tea/subpage/")
    assert rel(run_root, hit) == "category/tea/index.html"


def test_exact_directory_and_misses(run_root):
    r = resolver(run_root)
    assert rel(run_root, r.resolve_html("/category/tea/")) == "category/tea/index.html"
    assert r.resolve_html("/nothing/here/") is None
    assert r.resolve_html("/../../etc/passwd") is None


def test_variant_preference(run_root):
    assert rel(run_root, resolver(run_root).resolve_html("/shoes/")) == "shoes/desktop/index.html"
    mobile_first = resolver(run_root, default_variant="mobile")
    assert rel(run_root, mobile_first.resolve_html("/shoes/")) == "shoes/mobile/index.html"


def test_query_slug_lookup(run_root):
    hit = resolver(run_root).resolve_html("/index.php", "route=product/product&product_id=42")
    assert rel(run_root, hit) == "index.php__product_id_42__route_product_product/index.html"


def test_query_slug_follows_the_capture_query_policy(run_root):
    query = "utm_source=mail&route=product/product&product_id=42"
    assert resolver(run_root).resolve_html("/index.php", query) is None

    allow = resolver(run_root, normalizer=UrlNormalizer("allow", ["route", "product_id"]))
    hit = allow.resolve_html("/index.php", query)
    assert rel(run_root, hit) == "index.php__product_id_42__route_product_product/index.html"


def test_graph_prefix_routing(run_root):
    write_file(run_root, "_crawl/graph.json", json.dumps({
        "nodes": [{"url": f"{SHOP}/category/tea", "depth": 1, "crawled": True}],
        "edges": [],
    }))
    r = resolver(run_root)
    assert r.snapshot.graph_paths == (("category/tea", f"{SHOP}/category/tea"),)
    assert rel(run_root, r.resolve_html("/category/tea/filters/red")) == "category/tea/index.html"


def test_asset_fallback_stages(run_root):
    r = resolver(run_root)
    # preserved path
    assert rel(run_root, r.resolve_asset("/static/css/site.css")) == "static/css/site.css"
    # basename index
    assert rel(run_root, r.resolve_asset("/theme/v2/site.css")) == "static/css/site.css"
    # only reachable through the hash alias of a known origin
    assert rel(run_root, r.resolve_asset("/image/teacup.png")) == "assets/" + fingerprint(TEACUP)
    assert r.resolve_asset("/image/missing.png") is None


def test_hash_alias_tries_scheme_twins_and_typed_names(run_root):
    url = "http://shop.example.com/media/banner"
    write_file(run_root, "assets/" + fingerprint(url, "image/webp"), b"webp")
    hit = resolver(run_root).resolve_asset("/media/banner")
    assert rel(run_root, hit) == "assets/" + fingerprint(url, "image/webp")


def test_query_slug_folder_prefix_is_dropped():
    assert strip_query_slug_folder("/index.php__product_id_318/image/teacup.png") == "/image/teacup.png"
    assert strip_query_slug_folder("/image/teacup.png") == "/image/teacup.png"


def test_snapshot_origins(run_root):
    snapshot = build_snapshot(str(run_root))
    assert snapshot.origins == ("https://shop.example.com", "http://shop.example.com")
    assert len(snapshot.manifest) == 1


class RecordingFetcher:
    def __init__(self, root, answer_for=None):
        self.root = root
        self.answer_for = answer_for
        self.urls = []

    def fetch(self, url):
        self.urls.append(url)
        if url != self.answer_for:
            return None
        path = os.path.join(str(self.root), "assets", fingerprint(url))
        with open(path, "wb") as f:
            f.write(b"fetched")
        return path


def test_live_fetch_is_the_last_resort(run_root):
    fetcher = RecordingFetcher(run_root, answer_for="http://shop.example.com/image/new.png")
    r = resolver(run_root, fetcher=fetcher)

    hit = r.resolve_asset("/image/new.png")
    assert rel(run_root, hit) == "assets/" + fingerprint("http://shop.example.com/image/new.png")
    assert fetcher.urls == [f"{SHOP}/image/new.png", "http://shop.example.com/image/new.png"]

    # cached copy is found through the hash alias without fetching again
    fetcher.urls.clear()
    assert r.resolve_asset("/image/new.png") == hit
    assert fetcher.urls == []

    # stored assets never reach the fetcher
    r.resolve_asset("/static/css/site.css")
    assert fetcher.urls == []
