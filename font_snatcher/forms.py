# Request validators for the JSON API, one per endpoint.
#
# The forms are bound to the decoded JSON body (or the query string), not to
# an HTML form. Django's CharField happily turns 123 into "123", so every
# form first checks the raw types in `self.data` and rejects anything that is
# not a string with a payload error.
from django import forms

from .constants import FONT_STYLES
from .errors import InvalidInputError
from .utils import normalize_input_url


def _raw_is_optional_string(data, key: str) -> bool:
    value = data.get(key)
    return value is None or isinstance(value, str)


def first_error(form: forms.Form) -> str:
    """The first validation message of a bound, invalid form."""
    for errors in form.errors.values():
        if errors:
            return errors[0]
    return "Invalid request payload."


# /api/extract and /api/extract-fonts
class ExtractRequestForm(forms.Form):
    """
    Body: ``{"url": "example.com"}``.

    `cleaned_data["url"]` is the normalized absolute URL
    (see `utils.normalize_input_url`).
    """

    url = forms.CharField(required=False, strip=False)

    def clean_url(self):
        if not _raw_is_optional_string(self.data, "url"):
            raise forms.ValidationError("Invalid request payload.", code="payload")
        try:
            return normalize_input_url(self.data.get("url") or "")
        except InvalidInputError as exc:
            raise forms.ValidationError(str(exc), code="url")


# /api/match
class MatchRequestForm(forms.Form):
    """Body: ``{"family": ..., "weight"?: "400", "style"?: "normal", "url"?, "referer"?}``."""

    family = forms.CharField(required=False)
    weight = forms.CharField(required=False)
    style = forms.CharField(required=False)
    url = forms.CharField(required=False)
    referer = forms.CharField(required=False)

    def clean(self):
        cleaned = super().clean()

        for key in ("family", "weight", "style", "url", "referer"):
            if not _raw_is_optional_string(self.data, key):
                raise forms.ValidationError("Invalid match request payload.", code="payload")
        style = self.data.get("style")
        if style is not None and style not in FONT_STYLES:
            raise forms.ValidationError("Invalid match request payload.", code="payload")

        family = (self.data.get("family") or "").strip()
        if not family:
            raise forms.ValidationError("Font family is required.", code="required")

        weight = self.data.get("weight")
        cleaned["family"] = family
        cleaned["weight"] = weight.strip() if isinstance(weight, str) else "400"
        cleaned["style"] = style or "normal"
        return cleaned


# /api/font
class FontProxyForm(forms.Form):
    """Query string: ``u``, ``r``, ``d`` (0 or 1) and ``t``."""

    u = forms.CharField(required=False)
    r = forms.CharField(required=False)
    d = forms.CharField(required=False)
    t = forms.CharField(required=False)

    def clean(self):
        cleaned = super().clean()
        if not all(cleaned.get(key) for key in ("u", "r", "d", "t")):
            raise forms.ValidationError("Missing required query parameters.", code="required")
        if cleaned["d"] not in ("0", "1"):
            raise forms.ValidationError("Invalid download mode.", code="invalid")
        return cleaned
