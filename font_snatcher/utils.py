"""
URL and format helpers shared by the crawler, the CSS parser and the proxy.

Nothing in here touches the network.
"""

from __future__ import annotations

import base64
import math
import re
import socket
from typing import Optional, Union
from urllib.parse import urlsplit, urlunsplit

import requests

from .errors import InvalidInputError, UserFacingError

Weight = Union[int, str, None]

# Any "scheme://" prefix, so "ftp://x" is rejected instead of becoming "https://ftp://x".
ANY_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+.\-]*://")
HTTP_SCHEME_RE = re.compile(r"^https?://", re.I)

FONT_EXTENSION_TO_FORMAT = {
    "woff2": "woff2",
    "woff": "woff",
    "ttf": "ttf",
    "otf": "otf",
    "eot": "eot",
    "svg": "svg",
}

# Checked in order. "embedded-opentype" must win over "opentype".
FORMAT_HINTS = (
    ("woff2", "woff2"),
    ("woff", "woff"),
    ("truetype", "ttf"),
    ("ttf", "ttf"),
    ("embedded-opentype", "eot"),
    ("eot", "eot"),
    ("opentype", "otf"),
    ("otf", "otf"),
    ("svg", "svg"),
)


def normalize_input_url(raw: str) -> str:
    """
    Turn whatever the user typed into an absolute http(s) URL.

    - Strips whitespace and prepends ``https://`` when no scheme is given.
    - Rejects any other scheme (``ftp://``, ``file://`` ...).
    - Converts Unicode hostnames to punycode and lower-cases them.
    - Drops the fragment and gives an empty path a trailing slash.

    Raises:
        InvalidInputError: with a message that can be shown to the user.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise InvalidInputError("Please provide a website URL.")

    has_http_scheme = bool(HTTP_SCHEME_RE.match(trimmed))
    if ANY_SCHEME_RE.match(trimmed) and not has_http_scheme:
        raise InvalidInputError("Only http/https URLs are supported.")

    candidate = trimmed if has_http_scheme else f"https://{trimmed.lstrip('/')}"

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        raise InvalidInputError("Invalid URL format.")

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidInputError("Only http/https URLs are supported.")

    host = parts.hostname
    if not host:
        raise InvalidInputError("Invalid URL format.")

    try:
        ascii_host = host.encode("idna").decode("ascii").lower()
    except UnicodeError:
        raise InvalidInputError(
            "The domain contains characters we couldn’t interpret. Try ASCII/punycode."
        )

    netloc = f"[{ascii_host}]" if ":" in ascii_host else ascii_host
    if port is not None:
        netloc = f"{netloc}:{port}"
    if "@" in parts.netloc:
        netloc = f"{parts.netloc.rpartition('@')[0]}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def normalize_family_name(raw: str) -> str:
    """Strip one pair of surrounding quotes and outer whitespace."""
    value = (raw or "").strip()
    value = re.sub(r"^['\"]", "", value)
    value = re.sub(r"['\"]$", "", value)
    return value.strip()


def parse_weight_value(raw: Optional[str]) -> Weight:
    """
    Parse a ``font-weight`` declaration.

    ``normal``/``bold`` map to 400/700, integral numbers become ``int``.
    Anything else (ranges such as ``"100 900"``, ``bolder``) is kept as the
    raw string so nothing about a variable font's range is lost.
    """
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None

    lowered = value.lower()
    if lowered == "normal":
        return 400
    if lowered == "bold":
        return 700

    try:
        number = float(value)
    except ValueError:
        return value
    if math.isfinite(number) and number.is_integer():
        return int(number)
    return value


def parse_style_value(raw: Optional[str]) -> str:
    value = (raw or "").strip().lower()
    if value == "italic":
        return "italic"
    # "oblique 10deg" is still oblique.
    if value.split(" ", 1)[0] == "oblique":
        return "oblique"
    return "normal"


def detect_font_format(source_url: str, format_hint: Optional[str] = None) -> str:
    """Best guess at a font's binary format, from a format()/MIME hint or the extension."""
    if format_hint:
        hint = format_hint.strip().lower()
        for needle, fmt in FORMAT_HINTS:
            if needle in hint:
                return fmt

    try:
        path = urlsplit(source_url).path
    except ValueError:
        path = source_url.split("#", 1)[0].split("?", 1)[0]

    if "." in path.rsplit("/", 1)[-1]:
        extension = path.rsplit(".", 1)[-1].lower()
        return FONT_EXTENSION_TO_FORMAT.get(extension, "unknown")
    return "unknown"


def base64url_encode(value: str) -> str:
    """UTF-8 encode, base64url, no padding."""
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii")
    return encoded.rstrip("=")


def base64url_decode(value: str) -> str:
    """
    Inverse of `base64url_encode`.

    Raises ValueError (``binascii.Error`` / ``UnicodeDecodeError``) on garbage.
    """
    padding = (-len(value)) % 4
    raw = base64.urlsafe_b64decode(value + "=" * padding)
    return raw.decode("utf-8")


def friendly_error_message(url: str, exc: Exception) -> str:
    """Map low-level fetch exceptions to short, actionable messages for users."""
    try:
        host = (urlsplit(url).hostname or url).strip("/")
    except ValueError:
        host = url

    # Intentionally raised messages are shown verbatim.
    if isinstance(exc, UserFacingError):
        return str(exc)

    if isinstance(exc, requests.exceptions.ConnectTimeout):
        return f"{host} didn’t respond in time."
    if isinstance(exc, requests.exceptions.ReadTimeout):
        return f"{host} took too long to send data."
    if isinstance(exc, requests.exceptions.TooManyRedirects):
        return f"{host} redirected too many times (possible redirect loop)."
    if isinstance(exc, requests.exceptions.SSLError):
        return f"Couldn’t establish a secure HTTPS connection to {host} (certificate or TLS issue)."
    if isinstance(
        exc,
        (
            requests.exceptions.InvalidURL,
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
        ),
    ):
        return "That doesn’t look like a valid URL."
    if isinstance(exc, requests.exceptions.HTTPError):
        response = exc.response
        code = getattr(response, "status_code", "?")
        reason = getattr(response, "reason", "") or ""
        return f"{host} responded with HTTP {code} {reason}".rstrip() + "."

    if isinstance(exc, requests.exceptions.ConnectionError):
        text = str(exc).lower()
        if (
            "name or service not known" in text
            or "temporary failure in name resolution" in text
            or "failed to resolve" in text
            or "nodename nor servname provided" in text
        ):
            return f"DNS lookup failed for {host}."
        if "connection refused" in text:
            return f"{host} refused the connection."
        return f"Couldn’t connect to {host}."

    if isinstance(exc, socket.gaierror):
        return f"DNS lookup failed for {host}."
    if isinstance(exc, UnicodeError):
        return "The URL contains characters we couldn’t interpret."

    return f"Unexpected error while fetching {host}: {exc}"
