from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import requests
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings

from .errors import (
    ExpiredTokenError,
    FontTooLargeError,
    InvalidInputError,
    MalformedTokenError,
    SignatureMismatchError,
    UnsafeTargetError,
    UnsupportedFontError,
    UpstreamFetchError,
)
from .font_proxy import download_filename, fetch_font, is_likely_font
from .proxy_signing import ProxySigner, decode_signed_proxy_params
from .ssrf_utils import DnsCache, SsrfGuard

SECRET = "s3cret-" * 5
FONT_URL = "https://cdn.example.com/fonts/Inter-Regular.woff2"
REFERER = "https://example.com/"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeResponse:
    def __init__(self, status_code=200, headers=None, chunks=()):
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Type": "font/woff2"}
        self._chunks = list(chunks)
        self.closed = False

    def iter_content(self, chunk_size=1):
        return iter(self._chunks)

    def close(self):
        self.closed = True


def signed_params(signer, font_url=FONT_URL, referer=REFERER, download=False):
    query = parse_qs(urlsplit(signer.create_signed_proxy_url(font_url, referer, download)).query)
    return {key: values[0] for key, values in query.items()}


def public_guard():
    return SsrfGuard(resolver=lambda host: ["93.184.216.34"], cache=DnsCache())


class ProxySignerTests(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.signer = ProxySigner(secret=SECRET, clock=self.clock)

    def test_url_shape(self):
        url = self.signer.create_signed_proxy_url(FONT_URL, REFERER, download=True)
        self.assertTrue(url.startswith("/api/font?"))

        params = signed_params(self.signer, download=True)
        self.assertEqual(set(params), {"u", "r", "d", "t"})
        self.assertEqual(params["d"], "1")
        expires_at, _, signature = params["t"].partition(".")
        self.assertEqual(int(expires_at), int(self.clock.now * 1000) + 15 * 60 * 1000)
        self.assertEqual(len(signature), 64)
        self.assertEqual(decode_signed_proxy_params(params["u"], params["r"]), (FONT_URL, REFERER))

    def test_fresh_token_verifies(self):
        params = signed_params(self.signer)
        self.assertTrue(self.signer.verify_signed_proxy_params(params["u"], params["r"], params["d"], params["t"]))

    def test_token_expires(self):
        params = signed_params(self.signer)
        self.clock.now += 15 * 60 + 1

        with self.assertRaises(ExpiredTokenError):
            self.signer.check(params["u"], params["r"], params["d"], params["t"])
        self.assertFalse(self.signer.verify_signed_proxy_params(params["u"], params["r"], params["d"], params["t"]))

    def test_tampering_is_detected(self):
        params = signed_params(self.signer)
        other = signed_params(self.signer, font_url="https://cdn.example.com/other.woff2")

        with self.assertRaises(SignatureMismatchError):
            self.signer.check(other["u"], params["r"], params["d"], params["t"])
        with self.assertRaises(SignatureMismatchError):
            self.signer.check(params["u"], params["r"], "1", params["t"])

    def test_signature_is_checked_before_expiry(self):
        params = signed_params(self.signer)
        self.clock.now += 3600
        with self.assertRaises(SignatureMismatchError):
            self.signer.check(params["u"], params["r"], "1", params["t"])

    def test_other_secret_rejects(self):
        params = signed_params(self.signer)
        stranger = ProxySigner(secret="another-secret-value", clock=self.clock)
        self.assertFalse(stranger.verify_signed_proxy_params(params["u"], params["r"], params["d"], params["t"]))

    def test_malformed_tokens(self):
        params = signed_params(self.signer)
        for token in ("", "nodot", ".abc", "123.", "12a.abc", "١٢٣.abc"):
            with self.subTest(token=token):
                with self.assertRaises(MalformedTokenError):
                    self.signer.check(params["u"], params["r"], params["d"], token)

    @override_settings(DEBUG=False, FONT_PROXY_SECRET="")
    def test_missing_secret_in_production(self):
        with self.assertRaises(ImproperlyConfigured):
            ProxySigner().create_signed_proxy_url(FONT_URL, REFERER, False)

    @override_settings(DEBUG=True, FONT_PROXY_SECRET="short")
    def test_ephemeral_secret_in_development(self):
        signer = ProxySigner()
        params = signed_params(signer)
        self.assertTrue(signer.verify_signed_proxy_params(params["u"], params["r"], params["d"], params["t"]))

    @override_settings(FONT_PROXY_SECRET=SECRET)
    def test_secret_from_settings(self):
        params = signed_params(ProxySigner(clock=self.clock))
        self.assertTrue(self.signer.verify_signed_proxy_params(params["u"], params["r"], params["d"], params["t"]))


class FontHelpersTests(SimpleTestCase):
    def test_is_likely_font(self):
        self.assertTrue(is_likely_font("font/woff2", "https://x.example/f"))
        self.assertTrue(is_likely_font("Application/Octet-Stream", "https://x.example/f"))
        self.assertTrue(is_likely_font("text/plain", "https://x.example/f.ttf"))
        self.assertFalse(is_likely_font("text/html; charset=utf-8", "https://x.example/page"))

    def test_download_filename(self):
        self.assertEqual(download_filename(FONT_URL), "Inter-Regular.woff2")
        self.assertEqual(download_filename("https://x.example/My%20Font%22.otf"), "My Font.otf")
        self.assertEqual(download_filename("https://x.example/"), "font-file")


class FetchFontTests(SimpleTestCase):
    def setUp(self):
        self.signer = ProxySigner(secret=SECRET, clock=FakeClock())
        self.guard = public_guard()

    def fetch(self, session, download=False, font_url=FONT_URL):
        params = signed_params(self.signer, font_url=font_url, download=download)
        return fetch_font(
            params["u"], params["r"], params["d"], params["t"],
            signer=self.signer,
            guard=self.guard,
            session=session,
        )

    def test_streams_font(self):
        upstream = FakeResponse(
            headers={"content-type": "font/woff2", "content-length": "6"},
            chunks=[b"wOF2", b"", b"xx"],
        )
        session = MagicMock()
        session.get.return_value = upstream

        font = self.fetch(session, download=True)

        self.assertEqual(font.content_type, "font/woff2")
        self.assertEqual(font.content_length, "6")
        self.assertEqual(font.filename, "Inter-Regular.woff2")
        self.assertEqual(b"".join(font.iter_bytes()), b"wOF2xx")
        self.assertTrue(upstream.closed)

        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["headers"]["Referer"], REFERER)
        self.assertFalse(kwargs["allow_redirects"])

    def test_compressed_upstream_drops_encoded_length(self):
        # requests hands back the inflated body; 83 is the gzip size.
        body = b"\x00\x01\x00\x00" + b"\x00" * 196
        upstream = FakeResponse(
            headers={"Content-Type": "font/ttf", "Content-Length": "83", "Content-Encoding": "gzip"},
            chunks=[body[:100], body[100:]],
        )
        session = MagicMock()
        session.get.return_value = upstream

        font = self.fetch(session)

        self.assertIsNone(font.content_length)
        self.assertEqual(b"".join(font.iter_bytes()), body)

    def test_identity_encoding_keeps_length(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(
            headers={"Content-Type": "font/woff2", "Content-Length": "4", "Content-Encoding": "identity"},
            chunks=[b"wOF2"],
        )

        self.assertEqual(self.fetch(session).content_length, "4")

    def test_inline_mode_has_no_filename(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(chunks=[b"wOF2"])
        self.assertIsNone(self.fetch(session).filename)

    def test_redirect_to_localhost_is_blocked_before_connecting(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(status_code=302, headers={"Location": "http://localhost/secret"})

        with self.assertRaisesMessage(UnsafeTargetError, "Blocked target host."):
            self.fetch(session)
        self.assertEqual(session.get.call_count, 1)

    def test_follows_safe_redirects(self):
        final = FakeResponse(chunks=[b"wOF2"])
        session = MagicMock()
        session.get.side_effect = [
            FakeResponse(status_code=301, headers={"Location": "/v2/Inter.woff2"}),
            final,
        ]

        font = self.fetch(session)

        self.assertEqual(font.url, "https://cdn.example.com/v2/Inter.woff2")
        self.assertEqual(session.get.call_args_list[1][0][0], "https://cdn.example.com/v2/Inter.woff2")

    def test_too_many_redirects(self):
        session = MagicMock()
        session.get.side_effect = lambda url, **kw: FakeResponse(status_code=302, headers={"Location": url})

        with self.assertRaisesMessage(UpstreamFetchError, "Upstream redirected too many times."):
            self.fetch(session)
        self.assertEqual(session.get.call_count, 6)

    def test_upstream_error_status(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(status_code=404)

        with self.assertRaisesMessage(UpstreamFetchError, "Unable to fetch upstream font (404)."):
            self.fetch(session)

    def test_not_a_font(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(headers={"Content-Type": "text/html"})

        with self.assertRaises(UnsupportedFontError) as ctx:
            self.fetch(session, font_url="https://cdn.example.com/download")
        self.assertEqual(ctx.exception.status_code, 415)

    def test_declared_length_over_cap(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(headers={"Content-Type": "font/ttf", "Content-Length": "999999999"})

        with self.assertRaisesMessage(FontTooLargeError, "Font file too large."):
            self.fetch(session)

    def test_stream_over_cap_aborts(self):
        upstream = FakeResponse(chunks=[b"a" * 10, b"b" * 10])
        session = MagicMock()
        session.get.return_value = upstream
        font = self.fetch(session)

        with self.assertRaises(FontTooLargeError):
            list(font.iter_bytes(max_bytes=15))
        self.assertTrue(upstream.closed)

    def test_connection_error_is_upstream_failure(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectTimeout()

        with self.assertRaises(UpstreamFetchError) as ctx:
            self.fetch(session)
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(str(ctx.exception), "cdn.example.com didn’t respond in time.")

    def test_unresolvable_host_is_upstream_failure(self):
        guard = SsrfGuard(resolver=lambda host: [], cache=DnsCache())
        params = signed_params(self.signer)

        with self.assertRaisesMessage(UpstreamFetchError, "Unable to resolve target host."):
            fetch_font(
                params["u"], params["r"], params["d"], params["t"],
                signer=self.signer, guard=guard, session=MagicMock(),
            )

    def test_parameter_validation(self):
        params = signed_params(self.signer)
        with self.assertRaisesMessage(InvalidInputError, "Missing required query parameters."):
            fetch_font(params["u"], None, params["d"], params["t"], signer=self.signer, guard=self.guard)
        with self.assertRaisesMessage(InvalidInputError, "Invalid download mode."):
            fetch_font(params["u"], params["r"], "2", params["t"], signer=self.signer, guard=self.guard)

    def test_bad_token_never_fetches(self):
        session = MagicMock()
        params = signed_params(self.signer)
        with self.assertRaises(SignatureMismatchError):
            fetch_font(params["u"], params["r"], params["d"], "1.deadbeef",
                       signer=self.signer, guard=self.guard, session=session)
        session.get.assert_not_called()

    def test_signed_garbage_url(self):
        params = signed_params(self.signer, font_url="not a url")
        with self.assertRaisesMessage(InvalidInputError, "Invalid target font URL."):
            fetch_font(params["u"], params["r"], params["d"], params["t"],
                       signer=self.signer, guard=self.guard, session=MagicMock())
