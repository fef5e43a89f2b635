"""
Font extractor
==============

Given a page URL, find every web font the page can load:

1. Fetch the HTML (size capped, deadline bound).
2. Collect inline ``<style>`` blocks, ``<link rel="stylesheet">`` targets and
   ``<link rel="preload" as="font">`` hints with BeautifulSoup.
3. Crawl the stylesheets breadth-first, following ``@import`` up to
   `MAX_IMPORT_DEPTH` levels and at most `MAX_STYLESHEETS` sheets.
4. Add preloaded fonts no stylesheet declared.
5. Collapse duplicate variants, keeping the file most likely to render the
   preview text.

Failures on individual stylesheets never sink the whole crawl; they turn
into human-readable entries in `ExtractionResult.warnings`. Only a failure to
fetch the page itself is fatal.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urljoin, urlsplit

import requests
from bs4 import BeautifulSoup

from .constants import (
    CSS_ACCEPT,
    EXTRACTION_TIMEOUT,
    FONT_PREVIEW_TEXT,
    HTML_ACCEPT,
    MAX_CRAWL_REDIRECTS,
    MAX_CSS_BYTES,
    MAX_HTML_BYTES,
    MAX_IMPORT_DEPTH,
    MAX_STYLESHEETS,
)
from .css_utils import ExtractedFontSource, parse_css_for_fonts
from .errors import ExtractionError, UnsafeTargetError, UpstreamFetchError
from .fetch_utils import Deadline, fetch_with_safe_redirects, new_session, read_text_within_limit
from .ssrf_utils import SsrfGuard
from .utils import detect_font_format, friendly_error_message, is_http_url

logger = logging.getLogger(__name__)

FORMAT_PRIORITY = {
    "woff2": 0,
    "woff": 1,
    "otf": 2,
    "ttf": 3,
    "eot": 4,
    "svg": 5,
    "unknown": 6,
}

# Filename tokens that describe a style rather than the family.
FILENAME_STYLE_RE = re.compile(
    r"[-_](regular|bold|italic|light|medium|semibold|thin|black|variable|wght|ital)", re.I
)
FILENAME_NUMBER_RE = re.compile(r"[-_]\d+")

HEX_RE = re.compile(r"^[0-9A-F]{1,6}$")
HEX_WILDCARD_RE = re.compile(r"^[0-9A-F?]{1,6}$")

# Unique code points of the preview string, in first-seen order.
PREVIEW_CODE_POINTS = tuple(dict.fromkeys(ord(ch) for ch in FONT_PREVIEW_TEXT))


@dataclass
class ExtractionStats:
    stylesheet_count: int = 0
    font_face_count: int = 0
    unique_font_count: int = 0

    def to_json(self) -> dict:
        return {
            "stylesheetCount": self.stylesheet_count,
            "fontFaceCount": self.font_face_count,
            "uniqueFontCount": self.unique_font_count,
        }


@dataclass
class ExtractionResult:
    referer: str
    warnings: List[str] = field(default_factory=list)
    stats: ExtractionStats = field(default_factory=ExtractionStats)
    fonts: List[ExtractedFontSource] = field(default_factory=list)


@dataclass
class _Crawl:
    """Mutable state of one crawl."""

    queue: List[Tuple[str, int]] = field(default_factory=list)
    visited: set = field(default_factory=set)
    warnings: List[str] = field(default_factory=list)
    fonts: List[ExtractedFontSource] = field(default_factory=list)
    stylesheet_count: int = 0
    font_face_count: int = 0


# ───────────────────────── HTML collectors ─────────────────────────

def _resolve(href: str, base_url: str) -> Optional[str]:
    try:
        resolved = urljoin(base_url, href.strip())
    except ValueError:
        return None
    return resolved if is_http_url(resolved) else None


def _rel_values(tag) -> List[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [value.lower() for value in rel]


def collect_inline_styles(soup: BeautifulSoup) -> List[str]:
    styles = []
    for tag in soup.find_all("style"):
        css_text = tag.string if tag.string is not None else tag.get_text()
        if css_text and css_text.strip():
            styles.append(css_text)
    return styles


def collect_stylesheet_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    """``<link rel="stylesheet">`` plus ``<link rel="preload" as="style">``."""
    found = []
    for link in soup.find_all("link", href=True):
        rels = _rel_values(link)
        is_sheet = "stylesheet" in rels or (
            "preload" in rels and (link.get("as") or "").lower() == "style"
        )
        if not is_sheet:
            continue
        resolved = _resolve(link["href"], base_url)
        if resolved:
            found.append(resolved)
    return found


def collect_preloaded_fonts(soup: BeautifulSoup, base_url: str) -> List[Tuple[str, Optional[str]]]:
    """``(url, type attribute)`` for every ``<link rel="preload" as="font">``."""
    found = []
    for link in soup.find_all("link", href=True):
        if "preload" not in _rel_values(link):
            continue
        if (link.get("as") or "").lower() != "font":
            continue
        resolved = _resolve(link["href"], base_url)
        if resolved:
            found.append((resolved, link.get("type")))
    return found


def infer_family_from_url(font_url: str) -> str:
    """
    Guess a family name from a font file name.

    >>> infer_family_from_url("https://x.test/fonts/open_sans-bold-700.woff2")
    'Open Sans'
    """
    try:
        path = urlsplit(font_url).path
    except ValueError:
        return "Unknown Font"

    filename = unquote(path.rsplit("/", 1)[-1])
    stem = re.sub(r"\.[^.]+$", "", filename)
    stem = FILENAME_STYLE_RE.sub("", stem)
    stem = FILENAME_NUMBER_RE.sub("", stem)

    words = [w for w in re.split(r"[-_]", stem) if w]
    titled = " ".join(w[:1].upper() + w[1:].lower() for w in words)
    return titled or "Unknown Font"


# ───────────────────────── deduplication ─────────────────────────

def _parse_unicode_range_token(raw: str) -> Optional[Tuple[int, int]]:
    token = raw.strip().upper()
    if not token.startswith("U+"):
        return None
    value = token[2:]
    if not value:
        return None

    parts = value.split("-")
    if len(parts) == 2:
        start_part, end_part = parts[0].strip(), parts[1].strip()
        if not HEX_RE.match(start_part) or not HEX_RE.match(end_part):
            return None
        start, end = int(start_part, 16), int(end_part, 16)
        return (start, end) if start <= end else None

    if len(parts) != 1:
        return None

    scalar = parts[0].strip()
    if not HEX_WILDCARD_RE.match(scalar):
        return None
    if "?" in scalar:
        return int(scalar.replace("?", "0"), 16), int(scalar.replace("?", "F"), 16)
    return int(scalar, 16), int(scalar, 16)


def unicode_coverage(unicode_range: Optional[str]) -> Tuple[int, int]:
    """
    ``(preview code points covered, touches Basic Latin/Latin-1)``.

    No ``unicode-range`` at all, or one with only malformed tokens, scores
    ``(0, 0)``.
    """
    if not unicode_range:
        return 0, 0
    intervals = [
        interval
        for interval in map(_parse_unicode_range_token, unicode_range.split(","))
        if interval is not None
    ]
    if not intervals:
        return 0, 0

    preview = sum(
        1 for cp in PREVIEW_CODE_POINTS if any(lo <= cp <= hi for lo, hi in intervals)
    )
    basic_latin = 1 if any(lo <= 0xFF and hi >= 0 for lo, hi in intervals) else 0
    return preview, basic_latin


def family_key(family: str) -> str:
    value = family.strip().lower()
    value = re.sub(r"^['\"]|['\"]$", "", value)
    return re.sub(r"\s+", " ", value)


def _number_text(value: float) -> str:
    return str(int(value)) if value.is_integer() else repr(value)


def weight_key(weight) -> str:
    """Normalize a weight so ``400``, ``"normal"`` and ``None`` compare equal."""
    if isinstance(weight, (int, float)):
        if isinstance(weight, float) and not math.isfinite(weight):
            return "400"
        return str(int(round(weight)))
    if not isinstance(weight, str):
        return "400"

    normalized = weight.strip().lower()
    if normalized in ("", "normal"):
        return "400"
    if normalized in ("bold", "bolder"):
        return "700"
    if normalized == "lighter":
        return "300"

    numbers = []
    for piece in normalized.split():
        try:
            number = float(piece)
        except ValueError:
            continue
        if math.isfinite(number):
            numbers.append(number)
    if not numbers:
        return normalized

    low, high = min(numbers), max(numbers)
    if low == high:
        return _number_text(low)
    return f"{_number_text(low)} {_number_text(high)}"


def _comparable_url_length(url: str) -> int:
    try:
        parts = urlsplit(url)
    except ValueError:
        return len(url)
    if not parts.scheme or not parts.netloc:
        return len(url)
    return len(f"{parts.scheme}://{parts.netloc}{parts.path or '/'}")


def deduplicate_fonts(fonts: List[ExtractedFontSource]) -> List[ExtractedFontSource]:
    """
    One entry per ``(family, style, weight)``, in order of first arrival.

    When two sources share a key the winner is the one that (in order):
    covers more of the preview text, overlaps Basic Latin, has the better
    format, has the shorter URL. Ties keep the earlier source.
    """
    by_variant: Dict[str, ExtractedFontSource] = {}
    coverage_cache: Dict[Tuple[str, str], Tuple[int, int]] = {}

    def coverage(font: ExtractedFontSource) -> Tuple[int, int]:
        cache_key = (font.source_url, font.unicode_range or "")
        if cache_key not in coverage_cache:
            coverage_cache[cache_key] = unicode_coverage(font.unicode_range)
        return coverage_cache[cache_key]

    for font in fonts:
        key = f"{family_key(font.family)}::{font.style}::{weight_key(font.weight)}"
        existing = by_variant.get(key)
        if existing is None:
            by_variant[key] = font
            continue

        incoming_cov, existing_cov = coverage(font), coverage(existing)
        if incoming_cov != existing_cov:
            # Tuples compare preview coverage first, then the Basic Latin flag.
            if incoming_cov > existing_cov:
                by_variant[key] = font
            continue

        incoming_rank = FORMAT_PRIORITY.get(font.format, FORMAT_PRIORITY["unknown"])
        existing_rank = FORMAT_PRIORITY.get(existing.format, FORMAT_PRIORITY["unknown"])
        if incoming_rank < existing_rank:
            by_variant[key] = font
        elif incoming_rank == existing_rank and (
            _comparable_url_length(font.source_url) < _comparable_url_length(existing.source_url)
        ):
            by_variant[key] = font

    return list(by_variant.values())


# ───────────────────────── fetching ─────────────────────────

def _is_success(response) -> bool:
    return 200 <= response.status_code < 300


def fetch_page_html(page_url: str, sess, guard: SsrfGuard) -> Tuple[str, bool]:
    """
    Fetch the page itself. Returns ``(html, truncated)``.

    Raises:
        UnsafeTargetError: the page (or a redirect hop) points somewhere private.
        ExtractionError: anything else that stops us from reading the page.
    """
    deadline = Deadline(EXTRACTION_TIMEOUT)
    try:
        response, _ = fetch_with_safe_redirects(
            sess,
            page_url,
            guard,
            headers={"Accept": HTML_ACCEPT},
            max_redirects=MAX_CRAWL_REDIRECTS,
            deadline=deadline,
        )
        if not _is_success(response):
            response.close()
            raise ExtractionError(f"Website fetch failed ({response.status_code}).")
        return read_text_within_limit(response, MAX_HTML_BYTES, deadline)
    except (UnsafeTargetError, ExtractionError):
        raise
    except (requests.RequestException, UpstreamFetchError, UnicodeError) as exc:
        logger.warning("Page fetch failed for %s: %s", page_url, exc)
        raise ExtractionError(friendly_error_message(page_url, exc)) from exc


def fetch_stylesheet_text(stylesheet_url: str, referer: str, sess, guard: SsrfGuard) -> Tuple[str, bool]:
    """
    Fetch one stylesheet. Returns ``(css_text, truncated)``.

    The caller has already vetted the first hop; redirect hops are vetted here.
    """
    deadline = Deadline(EXTRACTION_TIMEOUT)
    response, _ = fetch_with_safe_redirects(
        sess,
        stylesheet_url,
        guard,
        headers={"Accept": CSS_ACCEPT, "Referer": referer},
        max_redirects=MAX_CRAWL_REDIRECTS,
        check_first=False,
        deadline=deadline,
    )
    if not _is_success(response):
        response.close()
        raise UpstreamFetchError(f"Stylesheet fetch failed ({response.status_code}).")
    return read_text_within_limit(response, MAX_CSS_BYTES, deadline)


def _crawl_stylesheets(crawl: _Crawl, referer: str, sess, guard: SsrfGuard) -> None:
    page_host = urlsplit(referer).hostname

    while crawl.queue:
        url, depth = crawl.queue.pop(0)

        if depth > MAX_IMPORT_DEPTH:
            crawl.warnings.append(f"Skipped deep @import chain: {url}")
            continue

        try:
            if urlsplit(url).hostname != page_host:
                guard.assert_safe_target_url(url)
        except (UnsafeTargetError, ValueError) as exc:
            crawl.warnings.append(f"Skipped unsafe stylesheet {url}: {exc}")
            continue

        if url in crawl.visited:
            continue

        if crawl.stylesheet_count >= MAX_STYLESHEETS:
            crawl.warnings.append(f"Stopped crawl at {MAX_STYLESHEETS} stylesheets.")
            return

        crawl.visited.add(url)
        crawl.stylesheet_count += 1

        try:
            css_text, truncated = fetch_stylesheet_text(url, referer, sess, guard)
            if truncated:
                crawl.warnings.append(f"Truncated stylesheet at {MAX_CSS_BYTES} bytes: {url}")

            parsed = parse_css_for_fonts(css_text, url)
        except Exception as exc:  # noqa: BLE001 - any per-sheet failure is a warning
            logger.warning("Skipping stylesheet %s: %s", url, exc)
            crawl.warnings.append(f"Skipped stylesheet {url}: {friendly_error_message(url, exc)}")
            continue

        crawl.font_face_count += len(parsed.extracted_fonts)
        crawl.fonts.extend(parsed.extracted_fonts)

        for imported in parsed.imported_stylesheets:
            if imported not in crawl.visited:
                crawl.queue.append((imported, depth + 1))


# ───────────────────────── public API ─────────────────────────

def extract_fonts_from_website(
    page_url: str,
    session: Optional[requests.Session] = None,
    guard: Optional[SsrfGuard] = None,
) -> ExtractionResult:
    """
    Crawl `page_url` and return every unique font variant it references.

    `page_url` must already be normalized (see `utils.normalize_input_url`).
    Pass a `session` and `guard` to reuse connections and the DNS cache;
    tests pass fakes for both.
    """
    sess = session or new_session()
    guard = guard or SsrfGuard()

    parts = urlsplit(page_url)
    referer = f"{parts.scheme}://{parts.netloc.rpartition('@')[2]}/"

    html, html_truncated = fetch_page_html(page_url, sess, guard)
    soup = BeautifulSoup(html, "html.parser")

    crawl = _Crawl()
    if html_truncated:
        crawl.warnings.append(
            f"Truncated HTML at {MAX_HTML_BYTES} bytes; extracted from partial document."
        )

    crawl.queue.extend((url, 0) for url in collect_stylesheet_links(soup, page_url))
    preloaded = collect_preloaded_fonts(soup, page_url)

    for css_text in collect_inline_styles(soup):
        parsed = parse_css_for_fonts(css_text, page_url)
        crawl.font_face_count += len(parsed.extracted_fonts)
        crawl.fonts.extend(parsed.extracted_fonts)
        crawl.queue.extend((url, 0) for url in parsed.imported_stylesheets)

    _crawl_stylesheets(crawl, referer, sess, guard)

    # Preloads (Next.js and friends) only count when no @font-face declared them.
    known_urls = {font.source_url for font in crawl.fonts}
    for font_url, type_hint in preloaded:
        if font_url in known_urls:
            continue
        fmt = detect_font_format(font_url, type_hint)
        if fmt == "unknown":
            continue
        crawl.fonts.append(
            ExtractedFontSource(
                family=infer_family_from_url(font_url),
                style="normal",
                weight=None,
                format=fmt,
                source_url=font_url,
            )
        )
        known_urls.add(font_url)
        crawl.font_face_count += 1

    unique = deduplicate_fonts(crawl.fonts)
    logger.info(
        "Extracted %d unique fonts (%d faces, %d stylesheets) from %s",
        len(unique), crawl.font_face_count, crawl.stylesheet_count, page_url,
    )
    return ExtractionResult(
        referer=referer,
        warnings=crawl.warnings,
        stats=ExtractionStats(
            stylesheet_count=crawl.stylesheet_count,
            font_face_count=crawl.font_face_count,
            unique_font_count=len(unique),
        ),
        fonts=unique,
    )
