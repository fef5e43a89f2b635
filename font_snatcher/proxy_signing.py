"""
Signed, stateless font-proxy URLs.

A proxy URL looks like ``/api/font?u=<b64url font>&r=<b64url referer>&d=0|1&t=<token>``
with ``token = "<expiresAt>.<hex HMAC-SHA256>"``. The HMAC covers
``u.r.d.expiresAt``, so none of the parameters can be swapped without
invalidating it. ``expiresAt`` is in epoch milliseconds.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from typing import Callable, Optional, Tuple
from urllib.parse import urlencode

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .constants import FONT_PROXY_TOKEN_TTL_SECONDS
from .errors import ExpiredTokenError, MalformedTokenError, SignatureMismatchError
from .utils import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16
PROXY_PATH = "/api/font"


class ProxySigner:
    """
    Creates and checks signed proxy URLs.

    `secret` defaults to ``settings.FONT_PROXY_SECRET``. Outside production a
    missing or short secret is replaced by a random per-process one, which
    means URLs do not survive a restart; in production it is a configuration
    error, raised on the first signing attempt.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        ttl_seconds: int = FONT_PROXY_TOKEN_TTL_SECONDS,
    ):
        self._secret = secret
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    # ───────── secret ─────────

    def _resolve_secret(self) -> str:
        if self._secret is not None and len(self._secret) >= MIN_SECRET_LENGTH:
            return self._secret

        configured = getattr(settings, "FONT_PROXY_SECRET", "") or ""
        if len(configured) >= MIN_SECRET_LENGTH:
            self._secret = configured
            return configured

        if not settings.DEBUG:
            raise ImproperlyConfigured(
                f"FONT_PROXY_SECRET must be set to at least {MIN_SECRET_LENGTH} characters."
            )

        logger.warning("FONT_PROXY_SECRET not set; using an ephemeral proxy secret.")
        self._secret = secrets.token_hex(32)
        return self._secret

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _signature(self, encoded_url: str, encoded_referer: str, download_flag: str, expires_at: int) -> str:
        message = f"{encoded_url}.{encoded_referer}.{download_flag}.{expires_at}"
        return hmac.new(
            self._resolve_secret().encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    # ───────── public API ─────────

    def create_signed_proxy_url(self, font_url: str, referer: str, download: bool) -> str:
        encoded_url = base64url_encode(font_url)
        encoded_referer = base64url_encode(referer)
        download_flag = "1" if download else "0"
        expires_at = self._now_ms() + self.ttl_seconds * 1000

        signature = self._signature(encoded_url, encoded_referer, download_flag, expires_at)
        query = urlencode({
            "u": encoded_url,
            "r": encoded_referer,
            "d": download_flag,
            "t": f"{expires_at}.{signature}",
        })
        return f"{PROXY_PATH}?{query}"

    def check(self, encoded_url: str, encoded_referer: str, download_flag: str, token: str) -> None:
        """
        Raise a `ProxyTokenError` subclass unless the parameters carry a
        valid, unexpired signature.
        """
        expires_raw, dot, signature = (token or "").partition(".")
        if not dot or not expires_raw or not signature:
            raise MalformedTokenError("Token is not '<expiresAt>.<signature>'.")
        if not (expires_raw.isascii() and expires_raw.isdigit()):
            raise MalformedTokenError("Token expiry is not a number.")
        expires_at = int(expires_raw)

        expected = self._signature(encoded_url, encoded_referer, download_flag, expires_at)
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            raise SignatureMismatchError("Token signature does not match.")

        if self._now_ms() > expires_at:
            raise ExpiredTokenError("Token expired.")

    def verify_signed_proxy_params(
        self, encoded_url: str, encoded_referer: str, download_flag: str, token: str
    ) -> bool:
        try:
            self.check(encoded_url, encoded_referer, download_flag, token)
        except (MalformedTokenError, SignatureMismatchError, ExpiredTokenError):
            return False
        return True


def decode_signed_proxy_params(encoded_url: str, encoded_referer: str) -> Tuple[str, str]:
    """``(font_url, referer)``; raises ValueError on undecodable input."""
    return base64url_decode(encoded_url), base64url_decode(encoded_referer)
