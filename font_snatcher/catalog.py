"""
Bundled Google Fonts catalog.

The snapshot at ``data/google_fonts_snapshot.json`` is a list of
``{family, category, styles, weights, subsets}`` records. It is loaded once
per process (by the app config) into an immutable `FontCatalog`; records
that do not have the expected shape are dropped at load time.

Set ``FONT_CATALOG_PATH`` (settings or environment) to point at a fresher
snapshot without rebuilding the package.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple
from urllib.parse import quote

from .constants import FONT_STYLES

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_PATH = Path(__file__).resolve().parent / "data" / "google_fonts_snapshot.json"

GOOGLE_FONTS_SPECIMEN = "https://fonts.google.com/specimen/"


@dataclass(frozen=True)
class GoogleFontCatalogEntry:
    family: str
    category: str
    styles: Tuple[str, ...]
    weights: Tuple[int, ...]
    subsets: Tuple[str, ...]


def specimen_url(family: str) -> str:
    """Google Fonts specimen page, e.g. ``.../specimen/Open+Sans``."""
    return GOOGLE_FONTS_SPECIMEN + quote(family, safe="-_.!~*'()").replace("%20", "+")


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _is_number_list(value) -> bool:
    # bool is an int subclass; true/false in JSON is not a weight.
    return isinstance(value, list) and all(
        isinstance(item, (int, float)) and not isinstance(item, bool) for item in value
    )


def parse_catalog_entry(record) -> Optional[GoogleFontCatalogEntry]:
    """Validate one snapshot record; None when it has the wrong shape."""
    if not isinstance(record, dict):
        return None

    family = record.get("family")
    category = record.get("category")
    styles = record.get("styles")
    weights = record.get("weights")
    subsets = record.get("subsets")

    if not isinstance(family, str) or not family.strip():
        return None
    if not isinstance(category, str):
        return None
    if not (_is_str_list(styles) and _is_number_list(weights) and _is_str_list(subsets)):
        return None

    return GoogleFontCatalogEntry(
        family=family.strip(),
        category=category,
        styles=tuple(style for style in styles if style in FONT_STYLES),
        weights=tuple(sorted({int(weight) for weight in weights})),
        subsets=tuple(subsets),
    )


class FontCatalog:
    """Read-only sequence of catalog entries."""

    def __init__(self, entries: Iterable[GoogleFontCatalogEntry] = ()):
        self._entries: Tuple[GoogleFontCatalogEntry, ...] = tuple(entries)

    def __iter__(self) -> Iterator[GoogleFontCatalogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @classmethod
    def from_records(cls, records) -> "FontCatalog":
        if not isinstance(records, list):
            raise ValueError("Invalid Google Fonts snapshot format.")
        entries = []
        dropped = 0
        for record in records:
            entry = parse_catalog_entry(record)
            if entry is None:
                dropped += 1
                continue
            entries.append(entry)
        if dropped:
            logger.warning("Dropped %d malformed catalog records", dropped)
        return cls(entries)


def load_catalog(path: Optional[str] = None) -> FontCatalog:
    """
    Load the snapshot at `path` (default: the bundled one).

    A missing or unreadable snapshot yields an empty catalog and a warning:
    every font then classifies as unknown and no alternatives are offered,
    but the service keeps running.
    """
    snapshot = Path(path) if path else DEFAULT_SNAPSHOT_PATH
    try:
        with snapshot.open(encoding="utf-8") as fh:
            records = json.load(fh)
        catalog = FontCatalog.from_records(records)
    except (OSError, ValueError) as exc:
        logger.warning("Google Fonts snapshot unavailable (%s): %s", snapshot, exc)
        return FontCatalog()

    logger.info("Loaded %d catalog families from %s", len(catalog), snapshot)
    return catalog
