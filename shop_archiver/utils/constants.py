"""
Shared constants for the shop archiver.

Contains the documented defaults used across discovery, capture and serving.
"""

# Default user agent string for all HTTP requests
# Used by the browser driver, the discovery HTTP client and live fetch
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Mobile/15E148 Safari/604.1"
)

# Default HTTP request timeout in seconds (discovery, live fetch)
DEFAULT_TIMEOUT = 20

# Breadth-first crawl budget
DEFAULT_MAX_PAGES = 200
DEFAULT_MAX_DEPTH = 3

# Discovery waterfall
DEFAULT_TARGET_COUNT = 200
DEFAULT_API_MAX_ITEMS = 2000
DEFAULT_SITEMAP_MAX_URLS = 5000
DEFAULT_PATTERN_SAMPLE_SIZE = 30
DEFAULT_ID_MAX_RANGE = 2000
DEFAULT_ID_DELAY = 0.25

# Capture engine (milliseconds unless noted)
DEFAULT_CONCURRENCY = 2
DEFAULT_NAV_TIMEOUT = 20000
DEFAULT_PAGE_TIMEOUT = 45000
DEFAULT_RETRIES = 1
DEFAULT_RETRY_DELAY = 1000
DEFAULT_SCROLL_PASSES = 2
DEFAULT_SCROLL_DELAY = 250
DEFAULT_WAIT_EXTRA = 700
DEFAULT_QUIET_MILLIS = 1500
DEFAULT_MAX_CAPTURE_MS = 20000
DEFAULT_ASSET_BODY_TIMEOUT = 10000

# Assets larger than this are never stored (bytes)
DEFAULT_ASSET_MAX_BYTES = 5 * 1024 * 1024

# Analytics / tracking / ads hosts dropped regardless of origin
DEFAULT_TRACKER_REGEX = (
    r"googletagmanager\.com|google-analytics\.com|gtag/js|facebook\.net|"
    r"doubleclick\.net|mailchimp\.com|chimpstatic\.com|hotjar\.com|"
    r"clarity\.ms|googlesyndication\.com"
)

# Run layout
CRAWL_DIR = "_crawl"
ASSETS_DIR = "assets"
MANIFEST_FILE = "manifest.json"
PARTIAL_MANIFEST_FILE = "manifest.partial.jsonl"
STOP_FILE = "STOP"

# Device profiles understood by the capture engine
PROFILES = {
    "desktop": {
        "viewport": {"width": 1366, "height": 900},
        "device_scale_factor": 1,
        "is_mobile": False,
        "has_touch": False,
        "user_agent": DEFAULT_USER_AGENT,
    },
    "mobile": {
        "viewport": {"width": 390, "height": 844},
        "device_scale_factor": 3,
        "is_mobile": True,
        "has_touch": True,
        "user_agent": MOBILE_USER_AGENT,
    },
}
