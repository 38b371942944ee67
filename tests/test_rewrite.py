from shop_archiver.crawler.rewrite import PageRewriter, rewrite_css_urls, rewrite_srcset, rewrite_stylesheet, split_srcset
from shop_archiver.utils.domain import SameSitePolicy
from shop_archiver.utils.html import make_soup


PAGE = "https://shop.example.com/category/tea"


def rewriter():
    return PageRewriter(SameSitePolicy([PAGE]))


def test_internal_links_become_offline_directories():
    html = (
        '<a id="a" href="/category/tea?page=2">next</a>'
        '<a id="b" href="https://shop.example.com/about/#team">about</a>'
        '<a id="c" href="https://elsewhere.example.org/x">out</a>'
        '<a id="d" href="/downloads/catalog.pdf">pdf</a>'
        '<a id="e" href="mailto:hi@shop.example.com">mail</a>'
    )
    soup = make_soup(rewriter().rewrite(html, PAGE, "category/tea", {}))
    assert soup.find(id="a")["href"] == "/category/tea__page_2/"
    assert soup.find(id="b")["href"] == "/about/#team"
    assert soup.find(id="c")["href"] == "https://elsewhere.example.org/x"
    assert soup.find(id="d")["href"] == "/downloads/catalog.pdf"
    assert soup.find(id="e")["href"] == "mailto:hi@shop.example.com"


def test_asset_references_point_at_store():
    asset_map = {
        "https://cdn.example.com/img/photo.jpg": "assets/aaaaaaaaaaaaaaaa.jpg",
        "https://shop.example.com/css/site.css": "assets/bbbbbbbbbbbbbbbb.css",
    }
    html = (
        '<link rel="stylesheet" href="/css/site.css">'
        '<img id="hit" src="https://cdn.example.com/img/photo.jpg">'
        '<img id="miss" src="https://cdn.example.com/img/huge.jpg">'
    )
    soup = make_soup(rewriter().rewrite(html, PAGE, "category/tea", asset_map))
    assert soup.find("link")["href"] == "../../assets/bbbbbbbbbbbbbbbb.css"
    assert soup.find(id="hit")["src"] == "../../assets/aaaaaaaaaaaaaaaa.jpg"
    # skipped assets keep their remote URL
    assert soup.find(id="miss")["src"] == "https://cdn.example.com/img/huge.jpg"


def test_base_tag_is_honored_and_removed():
    asset_map = {"https://static.example.com/v2/logo.png": "assets/cccccccccccccccc.png"}
    html = '<html><head><base href="https://static.example.com/v2/"></head><body><img src="logo.png"></body></html>'
    out = rewriter().rewrite(html, PAGE, "index", asset_map)
    soup = make_soup(out)
    assert soup.find("base") is None
    assert soup.find("img")["src"] == "../assets/cccccccccccccccc.png"


def test_srcset_and_css_urls():
    asset_map = {
        "https://shop.example.com/i/a.jpg": "assets/a.jpg",
        "https://shop.example.com/i/bg.png": "assets/bg.png",
    }
    srcset = rewrite_srcset("/i/a.jpg 1x, /i/b.jpg 2x", PAGE, "", asset_map)
    assert srcset == "assets/a.jpg 1x, /i/b.jpg 2x"
    css = rewrite_css_urls("body{background:url('/i/bg.png')}", PAGE, "", asset_map)
    assert css == 'body{background:url("assets/bg.png")}'


def test_srcset_urls_may_contain_commas():
    thumb = "https://res.cloudinary.com/shop/image/upload/w_100,h_100,c_fill/tea.jpg"
    large = "https://res.cloudinary.com/shop/image/upload/w_800,h_800/tea.jpg"
    assert split_srcset(f"{thumb} 100w, {large} 800w") == [(thumb, "100w"), (large, "800w")]
    assert split_srcset("/i/a.jpg,/i/b.jpg 2x") == [("/i/a.jpg", ""), ("/i/b.jpg", "2x")]

    srcset = rewrite_srcset(f"{thumb} 100w, {large} 800w", PAGE, "category/tea", {thumb: "assets/t.jpg"})
    assert srcset == f"../../assets/t.jpg 100w, {large} 800w"


def test_stylesheet_references_resolve_against_the_stylesheet():
    css = (
        "@import \"print.css\";"
        "@font-face{src:url(../fonts/a.woff2?v=3#iefix)}"
        "body{background:url(\"data:image/png;base64,AA\")}"
    )
    seen = []

    def locate(url):
        seen.append(url)
        return "x"

    out = rewrite_stylesheet(css, "https://shop.example.com/theme/css/site.css", locate)
    assert seen == [
        "https://shop.example.com/theme/fonts/a.woff2?v=3",
        "https://shop.example.com/theme/css/print.css",
    ]
    assert out == '@import "x";@font-face{src:url("x")}body{background:url("data:image/png;base64,AA")}'


def test_mobile_gets_viewport_meta_once():
    html = "<html><head><title>t</title></head><body></body></html>"
    soup = make_soup(rewriter().rewrite(html, PAGE, "x", {}, mobile=True))
    assert len(soup.find_all("meta", attrs={"name": "viewport"})) == 1
    again = make_soup(rewriter().rewrite(str(soup), PAGE, "x", {}, mobile=True))
    assert len(again.find_all("meta", attrs={"name": "viewport"})) == 1
