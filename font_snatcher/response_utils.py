"""
Shape extraction results into the JSON the API returns.

`build_fonts_response` produces the rich ``/api/extract-fonts`` payload;
`extract_api_response` flattens it into the simpler ``/api/extract`` one.
"""

from __future__ import annotations

import re
import time
from typing import List, Optional
from urllib.parse import unquote, urlsplit

from .alternatives_utils import rank_legal_alternatives
from .catalog import FontCatalog
from .constants import LEGAL_WARNING_COPY
from .extract_utils import ExtractionResult, extract_fonts_from_website
from .licensing_utils import (
    KNOWN_PAID,
    UNKNOWN_OR_PAID,
    FREE_OPEN,
    build_family_index,
    classify_font_license,
    normalize_family_key,
)
from .proxy_signing import ProxySigner
from .ssrf_utils import SsrfGuard


def _font_id(family: str, index: int) -> str:
    slug = re.sub(r"\s+", "-", family.lower())
    return f"{slug}-{index + 1}"


def build_fonts_response(
    input_url: str,
    extraction: ExtractionResult,
    catalog: FontCatalog,
    signer: ProxySigner,
    duration_ms: int = 0,
) -> dict:
    family_index = build_family_index(catalog)
    referer = extraction.referer

    fonts = []
    for index, font in enumerate(extraction.fonts):
        license_info = classify_font_license(font.family, family_index, font.source_url)

        alternatives: List[dict] = []
        if license_info.status != FREE_OPEN:
            own_entry = family_index.get(normalize_family_key(font.family))
            alternatives = [
                candidate.to_json()
                for candidate in rank_legal_alternatives(
                    family=font.family,
                    style=font.style,
                    weight=font.weight,
                    source_category=own_entry.category if own_entry else None,
                    catalog=catalog,
                    exclude_families=[font.family],
                )
            ]

        if license_info.status == KNOWN_PAID and license_info.license_url:
            download_url = license_info.license_url
        else:
            download_url = signer.create_signed_proxy_url(font.source_url, referer, download=True)

        if license_info.status == UNKNOWN_OR_PAID:
            note = LEGAL_WARNING_COPY
        else:
            note = license_info.note

        fonts.append({
            "id": _font_id(font.family, index),
            "family": font.family,
            "style": font.style,
            "weight": font.weight,
            "format": font.format,
            "sourceUrl": font.source_url,
            "sourceHost": urlsplit(font.source_url).netloc.rpartition("@")[2],
            "previewUrl": signer.create_signed_proxy_url(font.source_url, referer, download=False),
            "downloadUrl": download_url,
            "licenseStatus": license_info.status,
            "licenseNote": note,
            "licenseUrl": license_info.license_url,
            "licenseProvider": license_info.provider,
            "alternatives": alternatives,
        })

    return {
        "site": {
            "inputUrl": input_url,
            "normalizedUrl": input_url,
            "referer": referer,
            "durationMs": duration_ms,
            "warnings": list(extraction.warnings),
        },
        "stats": extraction.stats.to_json(),
        "fonts": fonts,
    }


def extract_fonts_response(
    url: str,
    *,
    catalog: FontCatalog,
    signer: ProxySigner,
    guard: Optional[SsrfGuard] = None,
    session=None,
) -> dict:
    """Crawl `url` (already normalized) and build the rich response."""
    started = time.monotonic()
    extraction = extract_fonts_from_website(url, session=session, guard=guard)
    duration_ms = int((time.monotonic() - started) * 1000)
    return build_fonts_response(url, extraction, catalog, signer, duration_ms)


def _display_name(source_url: str, family: str) -> str:
    try:
        last = urlsplit(source_url).path.rsplit("/", 1)[-1]
    except ValueError:
        return family
    return unquote(last) or family


def flatten_fonts_response(rich: dict) -> dict:
    referer = rich["site"]["referer"]
    return {
        "fonts": [
            {
                "name": _display_name(font["sourceUrl"], font["family"]),
                "family": font["family"],
                "format": font["format"].upper(),
                "url": font["sourceUrl"],
                "weight": "400" if font["weight"] is None else str(font["weight"]),
                "style": font["style"],
                "referer": referer,
                "previewUrl": font["previewUrl"],
                "downloadUrl": font["downloadUrl"],
                "licenseStatus": font["licenseStatus"],
                "licenseNote": font["licenseNote"],
                "licenseUrl": font["licenseUrl"],
            }
            for font in rich["fonts"]
        ],
        "totalFound": rich["stats"]["uniqueFontCount"],
        "sourceUrl": rich["site"]["normalizedUrl"],
        "warnings": rich["site"]["warnings"],
    }


def extract_api_response(
    url: str,
    *,
    catalog: FontCatalog,
    signer: ProxySigner,
    guard: Optional[SsrfGuard] = None,
    session=None,
) -> dict:
    rich = extract_fonts_response(url, catalog=catalog, signer=signer, guard=guard, session=session)
    return flatten_fonts_response(rich)
