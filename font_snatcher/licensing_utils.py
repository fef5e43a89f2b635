"""
License classification for extracted fonts.

This is a heuristic, not legal advice. The decision order is:

1. The family (or its name without a ``Variable``/``VF`` tag) is in the
   bundled Google Fonts catalog → ``free_open``.
2. The family is a known commercial typeface → ``known_paid``.
3. The file is served from a commercial font service → ``known_paid``.
4. Anything else → ``unknown_or_paid``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from .catalog import GoogleFontCatalogEntry, specimen_url

FREE_OPEN = "free_open"
KNOWN_PAID = "known_paid"
UNKNOWN_OR_PAID = "unknown_or_paid"

OPEN_LICENSE_NOTE = (
    "Found in Google Fonts metadata (open-source family). "
    "Verify exact files and license terms before redistribution."
)

UNKNOWN_LICENSE_NOTE = (
    "This font might not be free to use. Download at your own risk. "
    "Check the foundry license before commercial use."
)

# ───────────────────── commercial catalogues ─────────────────────
# Foundry → licensing page.
HOEFLER = ("Hoefler&Co.", "https://www.typography.com/")
MONOTYPE = ("Monotype", "https://www.monotype.com/fonts")
GRILLI = ("Grilli Type", "https://www.grillitype.com/licensing")
LINETO = ("Lineto", "https://lineto.com/")
KLIM = ("Klim Type Foundry", "https://klim.co.nz/licences/")
COMMERCIAL_TYPE = ("Commercial Type", "https://commercialtype.com/")
MARK_SIMONSON = ("Mark Simonson Studio", "https://www.marksimonson.com/")
TYPEMATES = ("Typemates", "https://typemates.com/")

# Matched against the leading (or trailing) words of a family name, so
# "Circular" also catches "Circular Std Book" and "GT" catches "GT America".
KNOWN_PAID_FAMILIES: Dict[str, Tuple[str, str]] = {
    "berkeley mono": ("U.S. Graphics Company", "https://usgraphics.com/products/berkeley-mono"),
    "monolisa": ("MonoLisa", "https://www.monolisa.dev/"),
    "operator mono": HOEFLER,
    "gotham": HOEFLER,
    "whitney": HOEFLER,
    "sentinel": HOEFLER,
    "mercury text": HOEFLER,
    "ideal sans": HOEFLER,
    "chronicle": HOEFLER,
    "hoefler text": HOEFLER,
    "proxima nova": MARK_SIMONSON,
    "proxima vera": MARK_SIMONSON,
    "proxima sera": MARK_SIMONSON,
    "gt": GRILLI,
    "ff": ("FontFont (Monotype)", "https://www.monotype.com/fonts"),
    "neue haas grotesk": MONOTYPE,
    "neue haas unica": MONOTYPE,
    "neue helvetica": MONOTYPE,
    "avenir": MONOTYPE,
    "avenir next": MONOTYPE,
    "frutiger": MONOTYPE,
    "neue frutiger": MONOTYPE,
    "univers": MONOTYPE,
    "din next": MONOTYPE,
    "trade gothic": MONOTYPE,
    "sabon": MONOTYPE,
    "circular": LINETO,
    "akkurat": LINETO,
    "replica": LINETO,
    "graphik": COMMERCIAL_TYPE,
    "publico": COMMERCIAL_TYPE,
    "atlas grotesk": COMMERCIAL_TYPE,
    "lyon text": COMMERCIAL_TYPE,
    "canela": COMMERCIAL_TYPE,
    "sohne": KLIM,
    "söhne": KLIM,
    "tiempos": KLIM,
    "founders grotesk": KLIM,
    "calibre": KLIM,
    "untitled sans": KLIM,
    "untitled serif": KLIM,
    "brandon grotesque": ("HVD Fonts", "https://www.hvdfonts.com/"),
    "brandon text": ("HVD Fonts", "https://www.hvdfonts.com/"),
    "museo sans": ("exljbris", "https://www.exljbris.com/"),
    "museo slab": ("exljbris", "https://www.exljbris.com/"),
    "apercu": ("Colophon Foundry", "https://www.colophon-foundry.org/"),
    "aktiv grotesk": ("Dalton Maag", "https://www.daltonmaag.com/"),
    "font awesome 5 pro": ("Font Awesome", "https://fontawesome.com/plans"),
    "font awesome 6 pro": ("Font Awesome", "https://fontawesome.com/plans"),
}

TYPEMATES_FAMILIES = (
    "Alison", "Altona", "Alright", "Bridge Head", "Bridge Text", "Cera",
    "Comspot", "Conto", "Dockland", "Finador", "Matter", "Output Sans",
    "Pensum", "Quadraat Slab", "Rabiola", "Urby",
)
for _name in TYPEMATES_FAMILIES:
    KNOWN_PAID_FAMILIES.setdefault(_name.lower(), TYPEMATES)

# Commercial font services; the source URL's host or any parent domain.
KNOWN_PAID_HOSTS: Dict[str, Tuple[str, str]] = {
    "use.typekit.net": ("Adobe Fonts", "https://fonts.adobe.com/"),
    "use.adobe.com": ("Adobe Fonts", "https://fonts.adobe.com/"),
    "fonts.adobe.com": ("Adobe Fonts", "https://fonts.adobe.com/"),
    "fast.fonts.net": ("Monotype / MyFonts", "https://www.myfonts.com/"),
    "static.myfonts.net": ("Monotype / MyFonts", "https://www.myfonts.com/"),
    "fontspring.net": ("Fontspring", "https://www.fontspring.com/"),
    "cloud.typography.com": ("Hoefler Cloud.Typography", "https://www.typography.com/"),
    "static.typemates.com": TYPEMATES,
}


@dataclass
class LicenseClassification:
    status: str
    note: str
    license_url: Optional[str] = None
    provider: Optional[str] = None


# ───────────────────── normalisation ─────────────────────

def normalize_family_key(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip().lower())


def family_lookup_keys(value: str) -> List[str]:
    """The normalized family, plus the same name with ``variable``/``vf`` removed."""
    normalized = normalize_family_key(value)
    without_variable = normalize_family_key(re.sub(r"\b(variable|vf)\b", " ", normalized))
    keys = []
    for key in (normalized, without_variable):
        if key and key not in keys:
            keys.append(key)
    return keys


def _words(value: str) -> List[str]:
    return re.findall(r"[^\W_]+", value.lower())


def build_family_index(catalog: Iterable[GoogleFontCatalogEntry]) -> Dict[str, GoogleFontCatalogEntry]:
    return {normalize_family_key(entry.family): entry for entry in catalog}


# ───────────────────── lookups ─────────────────────

def known_paid_family(family: str) -> Optional[Tuple[str, str]]:
    """``(provider, license_url)`` when `family` is a known commercial typeface."""
    words = _words(family)
    if not words:
        return None
    for name, vendor in KNOWN_PAID_FAMILIES.items():
        table_words = name.split()
        size = len(table_words)
        if words[:size] == table_words:
            return vendor
        # Single words ("gt", "cera") are too ambiguous at the end of a name.
        if size > 1 and words[-size:] == table_words:
            return vendor
    return None


def known_paid_host(source_url: Optional[str]) -> Optional[Tuple[str, str]]:
    if not source_url:
        return None
    try:
        host = (urlsplit(source_url).hostname or "").rstrip(".")
    except ValueError:
        return None
    for paid_host, vendor in KNOWN_PAID_HOSTS.items():
        if host == paid_host or host.endswith("." + paid_host):
            return vendor
    return None


def classify_font_license(
    family: str,
    family_index: Dict[str, GoogleFontCatalogEntry],
    source_url: Optional[str] = None,
) -> LicenseClassification:
    for key in family_lookup_keys(family):
        entry = family_index.get(key)
        if entry is not None:
            return LicenseClassification(
                status=FREE_OPEN,
                note=OPEN_LICENSE_NOTE,
                license_url=specimen_url(entry.family),
                provider="Google Fonts",
            )

    vendor = known_paid_family(family)
    if vendor:
        provider, license_url = vendor
        return LicenseClassification(
            status=KNOWN_PAID,
            note=f"{family} is a commercial typeface from {provider}. "
                 "A license is required to use or redistribute it.",
            license_url=license_url,
            provider=provider,
        )

    vendor = known_paid_host(source_url)
    if vendor:
        provider, license_url = vendor
        return LicenseClassification(
            status=KNOWN_PAID,
            note=f"Served by {provider}, a commercial font service. "
                 "Fonts from this service are licensed to the site, not to you.",
            license_url=license_url,
            provider=provider,
        )

    return LicenseClassification(status=UNKNOWN_OR_PAID, note=UNKNOWN_LICENSE_NOTE)
