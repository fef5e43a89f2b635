"""
Tunables shared by the Font Snatcher utilities.

Byte caps and timeouts are sized for a single small dyno where every
request does its own crawl.
"""

# Absolute wall-clock budget (seconds) for one outbound fetch during a crawl.
EXTRACTION_TIMEOUT = 12

# Per-operation socket timeout handed to requests (connect, read).
SOCKET_TIMEOUT = (5, 10)

# Size caps for the bodies we are willing to read.
MAX_HTML_BYTES = 6_000_000
MAX_CSS_BYTES = 750_000
MAX_FONT_BYTES = 15_000_000

# Crawl bounds.
MAX_STYLESHEETS = 80
MAX_IMPORT_DEPTH = 3

# Font proxy.
MAX_FONT_REDIRECTS = 5
MAX_CRAWL_REDIRECTS = 10
FONT_PROXY_TOKEN_TTL_SECONDS = 15 * 60
FONT_PROXY_CHUNK_BYTES = 64 * 1024

# DNS answers are cached per hostname for this long; failed lookups for less.
DNS_CACHE_TTL_SECONDS = 5 * 60
DNS_NEGATIVE_CACHE_TTL_SECONDS = 30
DNS_TIMEOUT_SECONDS = 3.0

FONT_PREVIEW_TEXT = "The quick brown fox jumps over the lazy dog"

LEGAL_WARNING_COPY = "This font might not be free to use. Download at your own risk."

# Be honest about who is fetching. Some hosts refuse unknown agents, so keep
# the browser-ish prefix.
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) FontSnatcher/1.0 Safari/537.36"
)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
CSS_ACCEPT = "text/css,*/*;q=0.1"
FONT_ACCEPT = "font/woff2,font/woff,font/ttf,font/otf,*/*;q=0.1"

FONT_STYLES = ("normal", "italic", "oblique")
