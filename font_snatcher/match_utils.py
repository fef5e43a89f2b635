"""
``/api/match`` backend: a feature profile for a font plus its ranked open
alternatives.

The profile is not measured from glyph outlines. It is a deterministic,
name-derived approximation: real signals where we have them (weight, style,
serif category, "mono"/"code" in the name) and a stable FNV-1a jitter for
the metrics we cannot know without the file. Same input, same numbers.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional

from .alternatives_utils import AlternativeCandidate, clamp, rank_legal_alternatives
from .catalog import GoogleFontCatalogEntry
from .licensing_utils import build_family_index, normalize_family_key

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193


def fnv1a_32(text: str) -> int:
    value = FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * FNV_PRIME) & 0xFFFFFFFF
    return value


def mean_weight(weight: str) -> float:
    """Average of the numeric parts of ``"400"`` / ``"100 900"``; 400 otherwise."""
    numbers = []
    for piece in (weight or "").split():
        try:
            number = float(piece)
        except ValueError:
            continue
        if math.isfinite(number):
            numbers.append(number)
    if not numbers:
        return 400.0
    return sum(numbers) / len(numbers)


def create_feature_profile(family: str, style: str, weight: str, category: Optional[str]) -> dict:
    family_lower = family.lower()
    numeric_weight = mean_weight(weight)
    seed = fnv1a_32(f"{family_lower}:{style}:{weight}")

    def jitter(offset: int) -> float:
        return ((seed + offset) % 101) / 100

    is_serif = category == "serif"
    is_mono = "mono" in family_lower or "code" in family_lower

    return {
        "weightClass": clamp(numeric_weight / 900),
        "widthClass": clamp(0.4 + jitter(17) * 0.3),
        "xHeightRatio": clamp(0.45 + jitter(29) * 0.2),
        "capHeightRatio": clamp(0.65 + jitter(43) * 0.2),
        "ascenderRatio": clamp(0.85 + jitter(59) * 0.15),
        "descenderRatio": clamp(0.18 + jitter(71) * 0.2),
        "avgWidthRatio": clamp(0.48 + jitter(83) * 0.25),
        "serifScore": 0.75 if is_serif else 0.18,
        "contrastRatio": 0.24 if is_serif else 0.1,
        "roundness": clamp(0.45 + jitter(97) * 0.3),
        "isMonospace": 1 if is_mono else 0,
        "italicAngle": 0.22 if style == "italic" else 0,
        "panoseSerif": 0.7 if is_serif else 0,
        "panoseWeight": clamp(numeric_weight / 900),
        "complexity": clamp(0.25 + jitter(109) * 0.3),
    }


def _match_alternatives(candidates: List[AlternativeCandidate]) -> List[dict]:
    return [
        {
            "family": candidate.family,
            "category": candidate.category,
            "similarity": candidate.score,
            "reason": f"{candidate.score}% visual match",
            "downloadUrl": candidate.google_fonts_url,
        }
        for candidate in candidates
    ]


def build_match_response(
    family: str,
    style: str,
    weight: str,
    catalog: Iterable[GoogleFontCatalogEntry],
) -> dict:
    entries = list(catalog)
    family_index = build_family_index(entries)
    entry = family_index.get(normalize_family_key(family))
    source_category = entry.category if entry else None

    alternatives = rank_legal_alternatives(
        family=family,
        style=style,
        weight=weight,
        source_category=source_category,
        catalog=entries,
        exclude_families=[family],
    )

    return {
        "original": {"family": family, "weight": weight, "style": style},
        "method": "feature-similarity",
        "features": create_feature_profile(family, style, weight, source_category),
        "alternatives": _match_alternatives(alternatives),
    }
