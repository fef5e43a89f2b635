"""
HTTP plumbing shared by the crawler and the font proxy.

Redirects are never left to requests: every hop is followed by hand so the
SSRF guard sees each Location before we connect to it.

A `Deadline` bounds a whole fetch (every hop, the headers and the body).
Each hop's socket timeouts are clamped to what is left of it, and a
watchdog timer tears the connection down if the body is still trickling in
when it runs out.
"""

from __future__ import annotations

import codecs
import logging
import threading
import time
from typing import Optional, Tuple
from urllib.parse import urljoin, urlsplit

import requests

from .constants import SOCKET_TIMEOUT, USER_AGENT
from .errors import UpstreamFetchError

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}

READ_CHUNK_BYTES = 64 * 1024


def _host_label(url) -> str:
    try:
        host = urlsplit(url).hostname if isinstance(url, str) else None
    except ValueError:
        host = None
    return host or "The server"


class Deadline:
    """Absolute wall-clock budget for one fetch."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return self.expires_at - self._clock()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def error(self, url) -> UpstreamFetchError:
        return UpstreamFetchError(f"{_host_label(url)} took longer than {self.seconds:g}s to respond.")

    def clamp(self, timeout, url):
        """`timeout` (a number or a (connect, read) pair) capped at what is left."""
        remaining = self.remaining()
        if remaining <= 0:
            raise self.error(url)
        if isinstance(timeout, tuple):
            return tuple(min(part, remaining) for part in timeout)
        return min(timeout, remaining)


def abort_response(response) -> None:
    """Close `response` from any thread, waking a read blocked on its socket."""
    raw = getattr(response, "raw", None)
    shutdown = getattr(raw, "shutdown", None)
    if callable(shutdown):
        try:
            shutdown()
        except OSError as exc:
            logger.debug("Socket shutdown failed: %s", exc)
    response.close()


def new_session() -> requests.Session:
    sess = requests.Session()
    sess.headers["User-Agent"] = USER_AGENT
    return sess


def header_value(headers, name: str) -> Optional[str]:
    """Case-insensitive header lookup that also works on plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def fetch_with_safe_redirects(
    session,
    url: str,
    guard,
    *,
    headers: dict,
    max_redirects: int,
    check_first: bool = True,
    timeout=SOCKET_TIMEOUT,
    deadline: Optional[Deadline] = None,
) -> Tuple[requests.Response, str]:
    """
    GET `url`, following up to `max_redirects` redirects manually.

    The guard runs before every hop (before the first one too, unless
    `check_first` is False because the caller already vetted that host).
    With a `deadline`, each hop's timeouts are clamped to the time left and
    the fetch fails once it has run out.
    Returns the non-redirect response, still streaming, and the URL that
    produced it. The caller owns closing the response.
    """
    current = url
    for hop in range(max_redirects + 1):
        if hop > 0 or check_first:
            guard.assert_safe_target_url(current)

        hop_timeout = deadline.clamp(timeout, current) if deadline else timeout
        try:
            response = session.get(
                current,
                headers=headers,
                allow_redirects=False,
                stream=True,
                timeout=hop_timeout,
            )
        except requests.Timeout as exc:
            if deadline and deadline.expired():
                raise deadline.error(current) from exc
            raise
        if response.status_code not in REDIRECT_STATUS_CODES:
            return response, current

        location = header_value(response.headers, "Location")
        response.close()
        if not location:
            raise UpstreamFetchError("Upstream redirect missing location header.")

        logger.debug("Hop %d: %s → %s", hop, current, location)
        current = urljoin(current, location)

    raise UpstreamFetchError("Upstream redirected too many times.")


def _charset(response) -> str:
    content_type = (header_value(response.headers, "Content-Type") or "").lower()
    # requests guesses ISO-8859-1 for any text/* without a charset; the web
    # is UTF-8 unless it says otherwise.
    encoding = getattr(response, "encoding", None)
    if "charset=" in content_type and isinstance(encoding, str):
        try:
            codecs.lookup(encoding)
            return encoding
        except LookupError:
            pass
    return "utf-8"


def read_text_within_limit(response, max_bytes: int, deadline: Deadline) -> Tuple[str, bool]:
    """
    Read at most `max_bytes` of `response` and decode it.

    Returns ``(text, truncated)``. Oversized bodies are cut at the cap rather
    than rejected. The read is abandoned, and the connection torn down, as
    soon as `deadline` runs out, even in the middle of a blocked read. The
    response is always closed.
    """
    chunks = []
    total = 0
    truncated = False
    response_url = getattr(response, "url", "")

    remaining = deadline.remaining()
    if remaining <= 0:
        response.close()
        raise deadline.error(response_url)

    timed_out = threading.Event()

    def expire():
        timed_out.set()
        abort_response(response)

    watchdog = threading.Timer(remaining, expire)
    watchdog.daemon = True
    watchdog.start()
    try:
        for chunk in response.iter_content(chunk_size=READ_CHUNK_BYTES):
            if timed_out.is_set() or deadline.expired():
                raise deadline.error(response_url)
            if not chunk:
                continue
            room = max_bytes - total
            if len(chunk) > room:
                if room > 0:
                    chunks.append(chunk[:room])
                truncated = True
                break
            total += len(chunk)
            chunks.append(chunk)
    except UpstreamFetchError:
        raise
    except Exception as exc:
        # The watchdog closing the socket surfaces as whatever the reader
        # happened to be doing at the time.
        if timed_out.is_set() or deadline.expired():
            raise deadline.error(response_url) from exc
        raise
    finally:
        watchdog.cancel()
        response.close()

    # A reader cut off by the watchdog may just see the body end early.
    if timed_out.is_set():
        raise deadline.error(response_url)

    return b"".join(chunks).decode(_charset(response), errors="replace"), truncated
