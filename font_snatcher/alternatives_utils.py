"""
Rank open-source (Google Fonts) alternatives for a font.

Each catalog family gets a weighted score from five signals:

=========  ======  ====================================================
signal     weight  what it measures
=========  ======  ====================================================
name       0.27    token Jaccard + bigram Dice / Levenshtein + containment
category   0.27    sans/serif/display/handwriting/monospace compatibility
style      0.16    the requested style is offered (or at least normal)
weight     0.20    distance between requested and offered weight ranges
monospace  0.10    mono sources prefer mono candidates
=========  ======  ====================================================

The top five are returned with a 20..98 display score.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .catalog import GoogleFontCatalogEntry, specimen_url
from .utils import Weight

MAX_ALTERNATIVES = 5

NAME_WEIGHT = 0.27
CATEGORY_WEIGHT = 0.27
STYLE_WEIGHT = 0.16
WEIGHT_WEIGHT = 0.20
MONO_WEIGHT = 0.10

FAMILY_STOP_WORDS = frozenset({"variable", "vf", "roman", "display", "text", "std", "pro", "web"})

MONO_RE = re.compile(r"\b(mono|code|console|terminal)\b")
HANDWRITING_RE = re.compile(r"\b(script|hand|cursive|brush)\b")
SERIF_RE = re.compile(r"\b(serif|roman|garamond|times|tiempos)\b")
DISPLAY_RE = re.compile(r"\b(display|headline|poster|impact|blackletter)\b")

# Unordered category pairs that are partially interchangeable.
CATEGORY_AFFINITY = {
    frozenset({"sans-serif", "display"}): 0.75,
    frozenset({"serif", "display"}): 0.55,
    frozenset({"sans-serif", "handwriting"}): 0.45,
    frozenset({"monospace", "sans-serif"}): 0.55,
}


@dataclass
class AlternativeCandidate:
    family: str
    score: int
    category: str
    google_fonts_url: str

    def to_json(self) -> dict:
        return {
            "family": self.family,
            "score": self.score,
            "category": self.category,
            "googleFontsUrl": self.google_fonts_url,
        }


def clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


# ───────────────────── name similarity ─────────────────────

def normalize_family(value: str) -> str:
    """Lower-case, non-alphanumerics to single spaces."""
    return re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()


def canonical_family(value: str) -> str:
    normalized = normalize_family(value)
    tokens = [t for t in normalized.split() if t not in FAMILY_STOP_WORDS]
    # "Display Pro" is all stop words; keep it rather than erase the name.
    return " ".join(tokens) if tokens else normalized


def _tokens(value: str) -> List[str]:
    return [t for t in canonical_family(value).split() if t not in FAMILY_STOP_WORDS]


def jaccard_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    left_set, right_set = set(left), set(right)
    if not left_set and not right_set:
        return 1.0
    union = left_set | right_set
    return len(left_set & right_set) / len(union)


def dice_coefficient(left: str, right: str) -> float:
    """Sørensen-Dice over character bigrams (multiset)."""
    if left == right:
        return 1.0
    if len(left) < 2 or len(right) < 2:
        return 0.0

    left_pairs = [left[i:i + 2] for i in range(len(left) - 1)]
    right_counts: dict = {}
    for i in range(len(right) - 1):
        pair = right[i:i + 2]
        right_counts[pair] = right_counts.get(pair, 0) + 1

    matches = 0
    for pair in left_pairs:
        if right_counts.get(pair, 0) > 0:
            matches += 1
            right_counts[pair] -= 1
    return 2 * matches / (len(left_pairs) + len(right) - 1)


def levenshtein_similarity(left: str, right: str) -> float:
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0

    previous = list(range(len(right) + 1))
    for i, lch in enumerate(left, start=1):
        current = [i] + [0] * len(right)
        for j, rch in enumerate(right, start=1):
            cost = 0 if lch == rch else 1
            current[j] = min(previous[j - 1] + cost, current[j - 1] + 1, previous[j] + 1)
        previous = current
    return 1 - previous[-1] / max(len(left), len(right))


def name_score(source: str, candidate: str) -> float:
    token_score = jaccard_similarity(_tokens(source), _tokens(candidate))

    source_canonical = canonical_family(source)
    candidate_canonical = canonical_family(candidate)
    char_score = max(
        dice_coefficient(source_canonical, candidate_canonical),
        levenshtein_similarity(source_canonical, candidate_canonical),
    )
    contains = (
        source_canonical in candidate_canonical or candidate_canonical in source_canonical
    )
    return clamp(token_score * 0.45 + char_score * 0.45 + (0.1 if contains else 0.0))


# ───────────────────── compatibility signals ─────────────────────

def infer_category_from_family(family: str) -> Optional[str]:
    normalized = normalize_family(family)
    if not normalized:
        return None
    if MONO_RE.search(normalized):
        return "monospace"
    if HANDWRITING_RE.search(normalized):
        return "handwriting"
    if SERIF_RE.search(normalized):
        return "serif"
    if DISPLAY_RE.search(normalized):
        return "display"
    return "sans-serif"


def category_compatibility(source_category: Optional[str], candidate_category: str) -> float:
    if not source_category:
        return 0.5
    if source_category == candidate_category:
        return 1.0
    return CATEGORY_AFFINITY.get(frozenset({source_category, candidate_category}), 0.3)


def style_compatibility(style: str, candidate: GoogleFontCatalogEntry) -> float:
    if style in candidate.styles:
        return 1.0
    if "normal" in candidate.styles and style != "normal":
        return 0.6
    return 0.25


def parse_weight_range(weight: Weight) -> Tuple[float, float]:
    """``(min, max)`` of a weight; anything unparseable is treated as 400."""
    if isinstance(weight, (int, float)):
        return float(weight), float(weight)
    if isinstance(weight, str):
        numbers = []
        for piece in weight.split():
            try:
                number = float(piece)
            except ValueError:
                continue
            if math.isfinite(number):
                numbers.append(number)
        if numbers:
            return min(numbers), max(numbers)
    return 400.0, 400.0


def weight_compatibility(weight: Weight, candidate: GoogleFontCatalogEntry) -> float:
    if not candidate.weights:
        return 0.4

    low, high = parse_weight_range(weight)
    candidate_low, candidate_high = min(candidate.weights), max(candidate.weights)
    if max(low, candidate_low) <= min(high, candidate_high):
        return 1.0

    distance = candidate_low - high if high < candidate_low else low - candidate_high
    if distance <= 100:
        return 0.8
    if distance <= 200:
        return 0.6
    if distance <= 300:
        return 0.4
    return 0.2


# ───────────────────── ranking ─────────────────────

def _raw_score(
    family: str,
    style: str,
    weight: Weight,
    source_category: Optional[str],
    source_is_mono: bool,
    entry: GoogleFontCatalogEntry,
) -> float:
    if source_is_mono:
        mono = 1.0 if entry.category == "monospace" else 0.15
    else:
        mono = 0.5
    return (
        name_score(family, entry.family) * NAME_WEIGHT
        + category_compatibility(source_category, entry.category) * CATEGORY_WEIGHT
        + style_compatibility(style, entry) * STYLE_WEIGHT
        + weight_compatibility(weight, entry) * WEIGHT_WEIGHT
        + mono * MONO_WEIGHT
    )


def rank_legal_alternatives(
    family: str,
    style: str,
    weight: Weight,
    source_category: Optional[str],
    catalog: Iterable[GoogleFontCatalogEntry],
    exclude_families: Iterable[str] = (),
) -> List[AlternativeCandidate]:
    """
    Return up to five catalog families that could stand in for `family`.

    `source_category` is the family's own Google Fonts category when known;
    otherwise it is guessed from the name. Families in `exclude_families`
    (compared case-, space- and punctuation-insensitively) are never returned.
    """
    category = source_category or infer_category_from_family(family)
    source_is_mono = bool(MONO_RE.search(normalize_family(family)))
    excluded = {normalize_family(name) for name in exclude_families}

    scored = []
    by_family = {}
    for entry in catalog:
        if normalize_family(entry.family) in excluded:
            continue
        raw = _raw_score(family, style, weight, category, source_is_mono, entry)
        scored.append((raw, entry.family))
        by_family[entry.family] = entry

    if not scored:
        return []

    # Highest score first; ties alphabetical, case-insensitively.
    scored.sort(key=lambda item: (-item[0], item[1].lower(), item[1]))
    top = scored[0][0]

    alternatives = []
    for raw, name in scored[:MAX_ALTERNATIVES]:
        relative = raw / top if top > 0 else 0.0
        blended = clamp(raw * 0.45 + relative * 0.55)
        entry = by_family[name]
        alternatives.append(
            AlternativeCandidate(
                family=name,
                score=int(math.floor(clamp(0.2 + blended * 0.78) * 100 + 0.5)),
                category=entry.category,
                google_fonts_url=specimen_url(name),
            )
        )
    return alternatives
