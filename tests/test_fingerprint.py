import os
import re

from shop_archiver.crawler.fingerprint import AssetStore, extension_for, fingerprint, is_capturable


PHOTO = "https://cdn.example.com/img/photo.jpg"


def test_fingerprint_is_deterministic():
    assert fingerprint(PHOTO) == fingerprint(PHOTO)
    assert re.fullmatch(r"[0-9a-f]{16}\.jpg", fingerprint(PHOTO))
    assert fingerprint(PHOTO) != fingerprint(PHOTO + "?v=2")


def test_extension_sources():
    assert extension_for("https://x.example.com/a/app.JS?v=1") == ".js"
    assert extension_for("https://x.example.com/image", "image/webp") == ".webp"
    assert extension_for("https://x.example.com/font", "font/woff2") == ".woff2"
    assert extension_for("https://x.example.com/blob", "") == ".bin"


def test_capturable_types():
    assert is_capturable("https://x.example.com/site.css")
    assert is_capturable("https://x.example.com/img", "image/avif")
    assert is_capturable("https://x.example.com/bundle", "application/javascript")
    assert not is_capturable("https://x.example.com/api/cart", "application/json")
    assert not is_capturable("https://x.example.com/page", "text/html")


def test_store_is_write_once(tmp_path):
    store = AssetStore(str(tmp_path), max_bytes=1024)
    first = store.store(PHOTO, "image/jpeg", b"original")
    second = store.store(PHOTO, "image/jpeg", b"different bytes")

    assert first.local_relative_path == second.local_relative_path == "assets/" + fingerprint(PHOTO)
    files = os.listdir(os.path.join(str(tmp_path), "assets"))
    assert files == [fingerprint(PHOTO)]
    with open(store.absolute_path(first.local_relative_path), "rb") as f:
        assert f.read() == b"original"
    assert store.exists(PHOTO, "image/jpeg")


def test_size_cap():
    store = AssetStore("/unused", max_bytes=5 * 1024 * 1024)
    assert store.over_size(10485760)
    assert not store.over_size(120 * 1024)
    assert not store.over_size(None)
