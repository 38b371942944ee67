import pytest

from shop_archiver.utils.paths import (
    UrlNormalizer,
    normalize,
    offline_href,
    page_local_path,
    relative_href,
    safe_segments,
    slugify_query,
)


def test_query_page_gets_deterministic_slug_path():
    url = "https://shop.example.com/category/tea?page=2"
    assert page_local_path(url) == "category/tea__page_2"
    # a later run produces the identical path
    assert UrlNormalizer().local_path(url) == "category/tea__page_2"


@pytest.mark.parametrize("url", [
    "https://shop.example.com/category/tea?page=2",
    "HTTPS://Shop.Example.com:443/a/b/?z=1&a=2#frag",
    "http://shop.example.com/",
    "https://shop.example.com/index.php?route=product/product&product_id=42",
])
def test_normalize_is_idempotent(url):
    first = normalize(url)
    second = normalize(first.url)
    assert second == first


@pytest.mark.parametrize("url, local", [
    ("https://shop.example.com/category/tea?page=2", "category/tea__page_2"),
    ("https://shop.example.com/", "index"),
    ("https://shop.example.com/?lang=de", "index__lang_de"),
    ("https://shop.example.com/index.php?route=product/product&product_id=42",
     "index.php__product_id_42__route_product_product"),
])
def test_local_path_read_back_as_url_is_stable(url, local):
    assert page_local_path(url) == local
    again = normalize("https://shop.example.com/" + local)
    assert again.local_path == local
    assert normalize(again.url) == again


def test_canonical_form():
    n = UrlNormalizer()
    assert n.canonical("HTTPS://Shop.Example.com:443/a/b/?z=1&a=2#top") == "https://shop.example.com/a/b?a=2&z=1"
    assert n.canonical("http://shop.example.com:8080") == "http://shop.example.com:8080/"
    assert n.canonical("mailto:someone@example.com") is None
    assert n.canonical("not a url") is None


def test_root_maps_to_index():
    assert page_local_path("https://shop.example.com/") == "index"
    assert page_local_path("https://shop.example.com/?lang=de") == "index__lang_de"


def test_query_modes():
    url = "https://shop.example.com/list?utm_source=x&page=3"
    assert UrlNormalizer("strip").canonical(url) == "https://shop.example.com/list"
    assert UrlNormalizer("allow", ["page"]).canonical(url) == "https://shop.example.com/list?page=3"
    assert UrlNormalizer("allow", ["page"]).query_slug("utm_source=x&page=3") == "page_3"
    assert UrlNormalizer("strip").query_slug("page=3") == ""
    with pytest.raises(ValueError):
        UrlNormalizer("shuffle")


def test_slug_sorts_and_truncates():
    assert slugify_query("b=2&a=1") == "a_1__b_2"
    assert slugify_query("") == ""
    long_slug = slugify_query("q=" + "x" * 300)
    assert len(long_slug) == 100 + 2 + 16


def test_safe_segments_neutralize_traversal():
    assert safe_segments("/a/../b/./c") == ["a", "_", "b", "_", "c"]
    assert safe_segments('/we<ird>/na"me') == ["we_ird_", "na_me"]


def test_offline_and_relative_hrefs():
    assert offline_href("index") == "/"
    assert offline_href("category/tea", "reviews") == "/category/tea/#reviews"
    assert relative_href("category/tea", "assets/0123456789abcdef.jpg") == "../../assets/0123456789abcdef.jpg"
    assert relative_href("", "assets/x.css") == "assets/x.css"
