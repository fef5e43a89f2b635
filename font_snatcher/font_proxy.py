"""
Font proxy fetch path behind ``GET /api/font``.

The browser never talks to the font host directly: it asks us with a signed
URL, we check the signature, vet every hop of the redirect chain against the
SSRF guard and stream the bytes back with a hard size cap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional
from urllib.parse import unquote, urlsplit

import requests

from .constants import FONT_ACCEPT, FONT_PROXY_CHUNK_BYTES, MAX_FONT_BYTES, MAX_FONT_REDIRECTS
from .errors import (
    FontTooLargeError,
    InvalidInputError,
    UnsafeTargetError,
    UnsupportedFontError,
    UpstreamFetchError,
)
from .fetch_utils import fetch_with_safe_redirects, header_value, new_session
from .proxy_signing import ProxySigner, decode_signed_proxy_params
from .ssrf_utils import SsrfGuard
from .utils import detect_font_format, friendly_error_message

logger = logging.getLogger(__name__)

FONT_CONTENT_TYPES = (
    "font/woff2",
    "font/woff",
    "font/ttf",
    "font/otf",
    "font/sfnt",
    "application/font-woff",
    "application/font-woff2",
    "application/font-sfnt",
    "application/octet-stream",
)

PROXY_CACHE_CONTROL = "public, max-age=600"


@dataclass
class ProxiedFont:
    """An upstream font response that has passed every check but the byte cap."""

    upstream: requests.Response
    url: str
    content_type: str
    content_length: Optional[str] = None
    filename: Optional[str] = None

    def iter_bytes(self, max_bytes: int = MAX_FONT_BYTES) -> Iterator[bytes]:
        """Yield the body, aborting once more than `max_bytes` have been read."""
        total = 0
        try:
            for chunk in self.upstream.iter_content(chunk_size=FONT_PROXY_CHUNK_BYTES):
                if not chunk:
                    continue
                total += len(chunk)
                if total > max_bytes:
                    logger.warning("Font %s exceeded %d bytes; aborting stream", self.url, max_bytes)
                    raise FontTooLargeError(f"Font response exceeded {max_bytes} bytes.")
                yield chunk
        finally:
            self.upstream.close()


def is_likely_font(content_type: str, font_url: str) -> bool:
    normalized = content_type.lower()
    if any(allowed in normalized for allowed in FONT_CONTENT_TYPES):
        return True
    return detect_font_format(font_url) != "unknown"


def download_filename(font_url: str) -> str:
    try:
        last = urlsplit(font_url).path.rsplit("/", 1)[-1]
    except ValueError:
        last = ""
    # Quotes and line breaks would break out of the header value.
    cleaned = unquote(last).replace('"', "").replace("\r", "").replace("\n", "")
    return cleaned or "font-file"


def fetch_font(
    encoded_url: Optional[str],
    encoded_referer: Optional[str],
    download_flag: Optional[str],
    token: Optional[str],
    *,
    signer: ProxySigner,
    guard: SsrfGuard,
    session=None,
) -> ProxiedFont:
    """
    Validate the signed parameters and open the upstream font.

    Raises:
        InvalidInputError: missing/invalid parameters (400).
        ProxyTokenError: bad or expired token (403).
        UnsafeTargetError: a hop points at a blocked host or IP (400).
        UpstreamFetchError: the upstream failed, or 413/415 subclasses.
    """
    if not (encoded_url and encoded_referer and token and download_flag):
        raise InvalidInputError("Missing required query parameters.")
    if download_flag not in ("0", "1"):
        raise InvalidInputError("Invalid download mode.")

    signer.check(encoded_url, encoded_referer, download_flag, token)

    try:
        font_url, referer = decode_signed_proxy_params(encoded_url, encoded_referer)
    except ValueError:
        raise InvalidInputError("Invalid encoded font params.")

    try:
        parts = urlsplit(font_url)
    except ValueError:
        raise InvalidInputError("Invalid target font URL.")
    if not parts.scheme or not parts.netloc:
        raise InvalidInputError("Invalid target font URL.")

    sess = session or new_session()
    try:
        upstream, final_url = fetch_with_safe_redirects(
            sess,
            font_url,
            guard,
            headers={"Accept": FONT_ACCEPT, "Referer": referer},
            max_redirects=MAX_FONT_REDIRECTS,
        )
    except UnsafeTargetError as exc:
        # Only a definite block is the caller's fault; a host we cannot
        # resolve is an upstream problem.
        if "blocked" in str(exc).lower():
            raise
        raise UpstreamFetchError(str(exc)) from exc
    except requests.RequestException as exc:
        logger.warning("Font fetch failed for %s: %s", font_url, exc)
        raise UpstreamFetchError(friendly_error_message(font_url, exc)) from exc

    if not 200 <= upstream.status_code < 300:
        upstream.close()
        raise UpstreamFetchError(f"Unable to fetch upstream font ({upstream.status_code}).")

    content_type = header_value(upstream.headers, "Content-Type") or "application/octet-stream"
    if not is_likely_font(content_type, final_url):
        upstream.close()
        raise UnsupportedFontError("Upstream response is not a recognized font file.")

    content_length = header_value(upstream.headers, "Content-Length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            declared = None
            content_length = None
        if declared is not None and declared > MAX_FONT_BYTES:
            upstream.close()
            raise FontTooLargeError("Font file too large.")

    # iter_content undoes gzip/deflate, so an encoded length no longer
    # describes the bytes we stream.
    content_encoding = (header_value(upstream.headers, "Content-Encoding") or "").strip().lower()
    if content_encoding and content_encoding != "identity":
        content_length = None

    return ProxiedFont(
        upstream=upstream,
        url=final_url,
        content_type=content_type,
        content_length=content_length,
        filename=download_filename(final_url) if download_flag == "1" else None,
    )
