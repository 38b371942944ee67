"""
HTML post-processing for archived pages.

Small named transforms over a parsed page, applied by the server to outgoing
responses and by the bake step to files on disk. Every transform is
idempotent: applying it twice changes nothing the second time.
"""

import os
import re
from typing import Optional, Tuple

from bs4 import BeautifulSoup

from ..utils.constants import ASSETS_DIR, CRAWL_DIR
from ..utils.html import make_soup
from ..utils.log import get_logger
from ..utils.paths import write_text_atomic


UNLOCK_SCRIPT_ID = "__archive_unlock"
CSS_PATCH_ID = "__archive_css_patch"

SPA_CSP = "script-src 'none'; object-src 'none'; base-uri 'self';"

# Script types that carry data rather than code
DATA_SCRIPT_TYPES = ("application/json", "application/ld+json")
NEUTRAL_SCRIPT_TYPE = "text/plain"

REFRESH_URL_RE = re.compile(r"url\s*=\s*['\"]?([^'\";]+)", re.IGNORECASE)

CONSENT_SELECTORS = (
    "#onetrust-banner-sdk",
    "#usercentrics-root",
    "#CybotCookiebotDialog",
    'div[id^="sp_message_container_"],.sp-message-container,.cm-wrapper,.cm__container,'
    '.cc-window,.cookie-consent,.cookieconsent,.cookiebar,div[id*="cookie"],'
    'div[class*="cookie"],div[id*="consent"],div[class*="consent"]',
    ".ts-trustbadge",
    'iframe[src*="trustedshops"]',
)

UNLOCK_SCRIPT = """(function(){try{
  if(window.__archiveUnlockRan){return;}window.__archiveUnlockRan=true;
  var SELECTORS=%(selectors)s;
  function rm(q){document.querySelectorAll(q).forEach(function(n){try{n.remove()}catch(e){}})}
  function unlock(){
    try{document.documentElement.style.setProperty('overflow','','important');document.body&&document.body.style.setProperty('overflow','','important');}catch(e){}
    try{document.querySelectorAll('*').forEach(function(el){
      var st=getComputedStyle(el);
      if((st.position==='fixed'||st.position==='sticky')&&parseInt(st.zIndex||'0',10)>=1000){
        var txt=(el.innerText||'').toLowerCase();
        if(/cookie|consent|datenschutz/.test(txt)){try{el.remove()}catch(e){}}
      }
      if(st.filter&&st.filter.indexOf('blur')>=0){try{el.style.setProperty('filter','none','important')}catch(e){}}
      if(st.backdropFilter&&st.backdropFilter!=='none'){try{el.style.setProperty('backdrop-filter','none','important')}catch(e){}}
    });}catch(e){}
  }
  function sweep(){SELECTORS.forEach(function(q){try{rm(q)}catch(e){}});unlock();}
  sweep();
  window.addEventListener('load',function(){setTimeout(sweep,500);});
  var t0=Date.now();var obs=new MutationObserver(function(){if(Date.now()-t0>%(window_ms)d){try{obs.disconnect()}catch(e){}return;}unlock();});
  try{obs.observe(document.documentElement,{childList:true,subtree:true})}catch(e){}
}catch(e){}})();"""

# Overlay watch window of the unlock script (milliseconds)
UNLOCK_WINDOW_MS = 7000

CSS_PATCH = """
html,body{opacity:1!important;visibility:visible!important;filter:none!important;}
[class*="skeleton"],[class*="placeholder"],[class*="shimmer"],.skeleton,.placeholder,.shimmer{display:none!important;}
.plp,.plp-grid,.ProductList,.Products,[data-component="ProductList"],[id*="product"],[class*="product-list"],[class*="plp-grid"],[class*="results"],.ais-InfiniteHits,.ais-Hits{opacity:1!important;visibility:visible!important;filter:none!important;}
[id*="overlay"],[class*="overlay"],.ts-trustbadge,#onetrust-banner-sdk,#usercentrics-root{display:none!important;}
"""


def _js_string_list(items) -> str:
    return "[" + ",".join("'" + item.replace("\\", "\\\\").replace("'", "\\'") + "'" for item in items) + "]"


def _insert_in_head(soup: BeautifulSoup, tag) -> None:
    """Insert a tag at the very start of <head> so it runs before site code."""
    if soup.head is not None:
        soup.head.insert(0, tag)
    elif soup.body is not None:
        soup.body.insert(0, tag)
    else:
        soup.append(tag)


def find_redirect_target(soup: BeautifulSoup) -> Optional[str]:
    """
    Target of a redirect shim: a meta refresh, else a 'Redirecting to' link.
    """
    for meta in soup.find_all("meta", attrs={"http-equiv": True}):
        if meta.get("http-equiv", "").lower() != "refresh":
            continue
        match = REFRESH_URL_RE.search(meta.get("content", ""))
        if match:
            return match.group(1).strip()

    for p in soup.find_all("p"):
        if p.get_text(" ", strip=True).lower().startswith("redirecting to"):
            link = p.find("a", href=True)
            if link is not None:
                return link["href"]
    return None


def strip_redirect_shim(soup: BeautifulSoup) -> bool:
    """Remove meta refresh tags, 'Redirecting to' paragraphs and location.replace scripts."""
    changed = False
    for meta in soup.find_all("meta", attrs={"http-equiv": True}):
        if meta.get("http-equiv", "").lower() == "refresh":
            meta.decompose()
            changed = True
    for p in soup.find_all("p"):
        if p.get_text(" ", strip=True).lower().startswith("redirecting to"):
            p.decompose()
            changed = True
    for script in soup.find_all("script"):
        text = script.string or ""
        if not script.get("src") and text.strip().startswith("location.replace("):
            script.decompose()
            changed = True
    return changed


def inject_unlock_script(soup: BeautifulSoup) -> bool:
    """Add the consent-overlay / scroll-unlock script once."""
    if soup.find(id=UNLOCK_SCRIPT_ID) is not None:
        return False
    tag = soup.new_tag("script", id=UNLOCK_SCRIPT_ID)
    tag.string = UNLOCK_SCRIPT % {
        "selectors": _js_string_list(CONSENT_SELECTORS),
        "window_ms": UNLOCK_WINDOW_MS,
    }
    _insert_in_head(soup, tag)
    return True


def inject_css_patch(soup: BeautifulSoup) -> bool:
    """Add the style block that un-hides server-rendered content once."""
    if soup.find(id=CSS_PATCH_ID) is not None:
        return False
    tag = soup.new_tag("style", id=CSS_PATCH_ID)
    tag.string = CSS_PATCH
    _insert_in_head(soup, tag)
    return True


def neutralize_scripts(soup: BeautifulSoup, keep_ids=(UNLOCK_SCRIPT_ID,)) -> int:
    """
    Stop client scripts from executing by switching their type.

    JSON and LD+JSON data blocks are kept, script preloads are dropped.

    Returns:
        Number of elements changed
    """
    changed = 0
    for script in soup.find_all("script"):
        if script.get("id") in keep_ids:
            continue
        script_type = (script.get("type") or "").strip().lower()
        if script_type in DATA_SCRIPT_TYPES or script_type == NEUTRAL_SCRIPT_TYPE:
            continue
        script["type"] = NEUTRAL_SCRIPT_TYPE
        script["data-archiver-blocked"] = script_type or "script"
        changed += 1

    for link in soup.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        rel = [r.lower() for r in rel]
        if "modulepreload" in rel or ("preload" in rel and (link.get("as") or "").lower() == "script"):
            link.decompose()
            changed += 1
    return changed


def strip_event_handlers(soup: BeautifulSoup) -> int:
    """Remove inline on* event handler attributes."""
    removed = 0
    for tag in soup.find_all(True):
        for attr in [a for a in tag.attrs if a.lower().startswith("on")]:
            del tag[attr]
            removed += 1
    return removed


def bake_html(html: str) -> str:
    """Static, non-hydrating version of a captured page."""
    soup = make_soup(html)
    changed = neutralize_scripts(soup, keep_ids=())
    changed += strip_event_handlers(soup)
    if inject_css_patch(soup):
        changed += 1
    if not changed:
        return html
    return str(soup)


def bake_run(root: str) -> Tuple[int, int]:
    """
    Bake every captured index.html of a run in place.

    Args:
        root: Run root directory

    Returns:
        Tuple of (scanned, updated) file counts
    """
    logger = get_logger("bake")
    scanned = updated = 0
    skip_dirs = {CRAWL_DIR, ASSETS_DIR}

    for dirpath, dirnames, filenames in os.walk(root):
        if os.path.abspath(dirpath) == os.path.abspath(root):
            dirnames[:] = [d for d in dirnames if d not in skip_dirs]
        dirnames.sort()
        if "index.html" not in filenames:
            continue

        path = os.path.join(dirpath, "index.html")
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            original = f.read()
        scanned += 1

        baked = bake_html(original)
        if baked != original:
            write_text_atomic(path, baked)
            updated += 1

    logger.info(f"Bake scanned: {scanned} updated: {updated}")
    return scanned, updated
