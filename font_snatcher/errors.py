"""
Exception types for Font Snatcher.

Anything deriving from `UserFacingError` carries a message that is safe to
show to the caller verbatim. `status_code` is the HTTP status the views use
when the error escapes a request.
"""


class UserFacingError(Exception):
    """Intentional, friendly error to show directly to the user."""

    status_code = 400


class InvalidInputError(UserFacingError):
    """Bad JSON, bad URL, or a missing required field."""

    status_code = 400


class UnsafeTargetError(UserFacingError):
    """The URL points somewhere the server must not fetch from."""

    status_code = 400


class ExtractionError(UserFacingError):
    """The target page itself could not be fetched."""

    status_code = 500


class UpstreamFetchError(UserFacingError):
    """A font (or its redirect chain) could not be fetched."""

    status_code = 502


class FontTooLargeError(UpstreamFetchError):
    status_code = 413


class UnsupportedFontError(UpstreamFetchError):
    status_code = 415


class ProxyTokenError(Exception):
    """Signed proxy parameters failed verification.

    The message is never shown to the caller; views answer with a generic
    "Invalid or expired font token." regardless of the subclass.
    """

    status_code = 403


class MalformedTokenError(ProxyTokenError):
    pass


class SignatureMismatchError(ProxyTokenError):
    pass


class ExpiredTokenError(ProxyTokenError):
    pass
