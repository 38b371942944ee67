import os

from shop_archiver.crawler.manifest import redirect_html
from shop_archiver.utils.html import make_soup
from shop_archiver.web.postprocess import (
    CSS_PATCH_ID,
    UNLOCK_SCRIPT_ID,
    bake_html,
    bake_run,
    find_redirect_target,
    inject_unlock_script,
    neutralize_scripts,
    strip_event_handlers,
    strip_redirect_shim,
)

from conftest import write_file


PAGE = (
    "<html><head><title>t</title>"
    '<link rel="modulepreload" href="/app.mjs">'
    '<link rel="preload" as="script" href="/chunk.js">'
    '<link rel="preload" as="image" href="/hero.jpg">'
    "</head><body>"
    '<button onclick="buy()" onMouseOver="x()">Buy</button>'
    '<script>window.boot()</script>'
    '<script type="module" src="/app.mjs"></script>'
    '<script type="application/json" id="state">{"a": 1}</script>'
    "</body></html>"
)


def test_redirect_target_from_meta_or_paragraph():
    assert find_redirect_target(make_soup(redirect_html("/a/desktop/"))) == "/a/desktop/"
    soup = make_soup('<p>Redirecting to <a href="/b/">/b/</a></p>')
    assert find_redirect_target(soup) == "/b/"
    assert find_redirect_target(make_soup("<p>hello</p>")) is None


def test_strip_redirect_shim():
    soup = make_soup(redirect_html("/a/"))
    assert strip_redirect_shim(soup)
    assert find_redirect_target(soup) is None
    assert "location.replace" not in str(soup)
    assert not strip_redirect_shim(soup)


def test_unlock_script_is_injected_once_at_head_start():
    soup = make_soup(PAGE)
    assert inject_unlock_script(soup)
    assert not inject_unlock_script(soup)
    first = soup.head.contents[0]
    assert first.name == "script" and first["id"] == UNLOCK_SCRIPT_ID
    assert "MutationObserver" in first.string
    assert "7000" in first.string
    assert "#onetrust-banner-sdk" in first.string


def test_neutralize_scripts_keeps_data_blocks():
    soup = make_soup(PAGE)
    changed = neutralize_scripts(soup)
    # two scripts plus two script preloads
    assert changed == 4
    scripts = soup.find_all("script")
    assert [s.get("type") for s in scripts] == ["text/plain", "text/plain", "application/json"]
    assert scripts[1]["data-archiver-blocked"] == "module"
    assert len(soup.find_all("link")) == 1
    assert neutralize_scripts(soup) == 0


def test_event_handlers_are_removed():
    soup = make_soup(PAGE)
    assert strip_event_handlers(soup) == 2
    assert soup.find("button").attrs == {}


def test_bake_is_idempotent(tmp_path):
    write_file(tmp_path, "category/tea/index.html", PAGE)
    write_file(tmp_path, "index.html", PAGE)
    write_file(tmp_path, "_crawl/index.html", PAGE)
    write_file(tmp_path, "assets/index.html", PAGE)

    assert bake_run(str(tmp_path)) == (2, 2)
    assert bake_run(str(tmp_path)) == (2, 0)

    with open(os.path.join(str(tmp_path), "category", "tea", "index.html"), encoding="utf-8") as f:
        baked = make_soup(f.read())
    assert baked.find(id=CSS_PATCH_ID) is not None
    assert baked.find("button").get("onclick") is None
    with open(os.path.join(str(tmp_path), "_crawl", "index.html"), encoding="utf-8") as f:
        assert f.read() == PAGE


def test_bake_html_blocks_every_script():
    soup = make_soup(bake_html(PAGE))
    assert all(s.get("type") in ("text/plain", "application/json") for s in soup.find_all("script"))
