"""
Flask application serving a captured run offline.

Routes every request through the ArchiveResolver: page requests get the
captured index.html (post-processed on the way out), asset requests get the
stored file. A handful of underscore routes expose the manifest.
"""

import os
from typing import Optional
from urllib.parse import urljoin, urlsplit

from flask import Flask, Response, abort, jsonify, redirect, render_template_string, request, send_file

from ..utils.config import ArchiverSettings
from ..utils.html import make_soup
from ..utils.log import get_logger
from ..utils.paths import has_file_extension, offline_href
from .fetch_cache import LiveFetcher
from .postprocess import (
    SPA_CSP,
    find_redirect_target,
    inject_unlock_script,
    neutralize_scripts,
    strip_redirect_shim,
)
from .resolver import SCRIPT_PATH_RE, ArchiveResolver, build_snapshot


# Fingerprinted files never change for a given name
IMMUTABLE_CACHE = "public, max-age=31536000, immutable"
ASSET_MAX_AGE = 86400
MAX_SEARCH_RESULTS = 500

ROBOTS_TXT = "User-agent: *\nDisallow: /\n"

BROWSE_TEMPLATE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>Archive index</title>
<style>body{font-family:sans-serif;margin:2rem}td{padding:2px 10px}.err{color:#a00}</style></head>
<body>
<h1>Archive index</h1>
<p>{{ ok }} captured, {{ failed }} failed</p>
<table>
<tr><th>Page</th><th>Profile</th><th>Class</th><th>Status</th></tr>
{% for record in records %}
<tr>
  <td>{% if record.ok %}<a href="{{ record.href }}">{{ record.url }}</a>{% else %}{{ record.url }}{% endif %}</td>
  <td>{{ record.profile }}</td>
  <td>{{ record.classification }}</td>
  <td{% if not record.ok %} class="err"{% endif %}>{{ record.status }}</td>
</tr>
{% endfor %}
</table>
</body>
</html>
"""


def is_asset_request(path: str) -> bool:
    """Whether a request path names a file rather than a page."""
    last = path.rstrip("/").rsplit("/", 1)[-1]
    if not has_file_extension(last):
        return False
    if last.lower().endswith((".html", ".htm")):
        return False
    return not SCRIPT_PATH_RE.search(last)


def _same_location(target: str, request_path: str) -> bool:
    return urlsplit(target).path.rstrip("/") == request_path.rstrip("/")


def create_app(root: str, settings: Optional[ArchiverSettings] = None) -> Flask:
    """
    Create and configure the Flask application for one run directory.

    Args:
        root: Run root directory
        settings: Serving settings (read from the environment when omitted)

    Returns:
        Configured Flask app
    """
    settings = settings or ArchiverSettings.from_env()
    logger = get_logger("server")

    snapshot = build_snapshot(root)
    fetcher = None
    if not settings.disable_fetch_cache:
        fetcher = LiveFetcher(
            snapshot.root,
            timeout=settings.http_timeout,
            max_bytes=settings.asset_max_bytes,
            user_agent=settings.user_agent
        )

    # captured shops serve their own /static/ tree
    app = Flask(__name__, static_folder=None)
    app.archive_settings = settings
    app.archive_snapshot = snapshot
    app.archive_resolver = ArchiveResolver(
        snapshot,
        default_variant=settings.default_variant,
        graph_routing=settings.enable_graph_routing,
        fetcher=fetcher,
        normalizer=settings.normalizer()
    )

    @app.after_request
    def security_headers(response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        return response

    @app.route("/robots.txt")
    def robots():
        return Response(ROBOTS_TXT, mimetype="text/plain")

    @app.route("/_manifest")
    def manifest():
        return jsonify([record.to_dict() for record in snapshot.manifest])

    @app.route("/_search")
    def search():
        """Case-insensitive substring search over page URLs and local paths."""
        query = (request.args.get("q") or "").strip().lower()
        results = []
        if query:
            for record in snapshot.manifest:
                if query in record.url.lower() or query in record.local_path.lower():
                    item = record.to_dict()
                    item["href"] = offline_href(record.local_path)
                    results.append(item)
                    if len(results) >= MAX_SEARCH_RESULTS:
                        break
        return jsonify({"query": query, "count": len(results), "results": results})

    @app.route("/_browse")
    def browse():
        records = [
            {
                "url": record.url,
                "href": offline_href(record.local_path),
                "profile": record.profile,
                "classification": record.classification,
                "status": record.status,
                "ok": record.ok,
            }
            for record in snapshot.manifest
        ]
        ok = sum(1 for record in records if record["ok"])
        return render_template_string(
            BROWSE_TEMPLATE, records=records, ok=ok, failed=len(records) - ok
        )

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def serve(path):
        resolver = app.archive_resolver
        request_path = "/" + path
        query = request.query_string.decode("latin-1")

        if is_asset_request(request_path):
            hit = resolver.resolve_asset(request_path, query)
            if not hit:
                logger.debug(f"[404] asset {request_path}")
                abort(404)
            return _send_asset(hit)

        if request_path == "/" and settings.start_path:
            hit = resolver.resolve_html(settings.start_path)
        else:
            hit = resolver.resolve_html(request_path, query)
        if not hit:
            logger.debug(f"[404] page {request_path}")
            abort(404)

        # relative asset references need the directory form
        if not request_path.endswith("/") and not request_path.lower().endswith((".html", ".htm")):
            location = request_path + "/"
            if query:
                location += "?" + query
            return redirect(location, code=301)

        return _send_page(hit, request_path)

    def _send_asset(path: str) -> Response:
        rel = os.path.relpath(path, snapshot.root).replace(os.sep, "/")
        response = send_file(path, conditional=True)
        if rel.startswith("assets/"):
            response.headers["Cache-Control"] = IMMUTABLE_CACHE
        else:
            response.headers["Cache-Control"] = f"public, max-age={ASSET_MAX_AGE}"
        return response

    def _send_page(path: str, request_path: str) -> Response:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            html = f.read()

        soup = make_soup(html)
        target = find_redirect_target(soup)
        if target:
            target = urljoin(request_path, target)
            if not _same_location(target, request_path):
                return redirect(target, code=302)

        headers = {"Cache-Control": "no-cache"}
        if not settings.disable_html_inject:
            strip_redirect_shim(soup)
            inject_unlock_script(soup)
        if settings.disable_spa_scripts:
            neutralize_scripts(soup)
            headers["Content-Security-Policy"] = SPA_CSP

        if settings.disable_html_inject and not settings.disable_spa_scripts:
            body = html
        else:
            body = str(soup)
        return Response(body, mimetype="text/html", headers=headers)

    logger.info(f"Serving {snapshot.root} ({len(snapshot.manifest)} manifest entries)")
    return app


def run_app(
    root: str,
    host: str = "127.0.0.1",
    port: int = 8080,
    debug: bool = False,
    settings: Optional[ArchiverSettings] = None
):
    """Run the Flask application for a run directory."""
    app = create_app(root, settings)
    app.run(host=host, port=port, debug=debug, threaded=True)
