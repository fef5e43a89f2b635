"""
CSS font-face parser.

`parse_css_for_fonts` takes one stylesheet (or inline ``<style>`` block) and
returns the ``@import`` targets it references plus one `ExtractedFontSource`
per ``url()`` entry of every ``@font-face`` rule, wherever that rule sits in
the tree (``@media``, ``@supports``, ``@layer`` ...).

tinycss2 does the tokenizing. Real-world CSS is messy; malformed rules come
back from tinycss2 as ParseError nodes and are skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin

import tinycss2
from tinycss2 import serialize

from .utils import (
    Weight,
    detect_font_format,
    is_http_url,
    normalize_family_name,
    parse_style_value,
    parse_weight_value,
)

# Block at-rules whose content is itself a rule list.
NESTING_AT_RULES = {"media", "supports", "layer", "document", "-moz-document", "container", "scope"}

COMMENT_RE = re.compile(r"/\*.*?\*/", re.S)


@dataclass
class ExtractedFontSource:
    """One ``src`` entry of one ``@font-face`` rule."""

    family: str
    style: str
    weight: Weight
    format: str
    source_url: str
    unicode_range: Optional[str] = None

    def to_json(self) -> dict:
        out = {
            "family": self.family,
            "style": self.style,
            "weight": self.weight,
            "format": self.format,
            "sourceUrl": self.source_url,
        }
        if self.unicode_range:
            out["unicodeRange"] = self.unicode_range
        return out


@dataclass
class ParsedCss:
    imported_stylesheets: List[str] = field(default_factory=list)
    extracted_fonts: List[ExtractedFontSource] = field(default_factory=list)


# ───────────────────────── token helpers ─────────────────────────

def _value_text(tokens) -> str:
    # serialize() puts "/**/" between tokens that would otherwise merge
    # (e.g. "U" "+0000" in a unicode-range); drop those and real comments.
    return COMMENT_RE.sub("", serialize(tokens)).strip()


def _meaningful(tokens) -> list:
    return [t for t in tokens if t.type not in ("whitespace", "comment")]


def _first_argument(function_block) -> Optional[str]:
    for token in function_block.arguments:
        if token.type in ("string", "ident", "url"):
            return token.value
    return None


def _resolve_http(raw: str, base_url: str) -> Optional[str]:
    try:
        resolved = urljoin(base_url, raw.strip())
    except ValueError:
        return None
    return resolved if is_http_url(resolved) else None


def flatten_rules(rules) -> list:
    """
    Walk the rule tree with an explicit worklist and return every rule,
    parents before children, in source order.
    """
    flattened = []
    pending = list(reversed(rules))
    while pending:
        rule = pending.pop()
        flattened.append(rule)
        if (
            rule.type == "at-rule"
            and rule.lower_at_keyword in NESTING_AT_RULES
            and rule.content is not None
        ):
            children = tinycss2.parse_rule_list(
                rule.content, skip_comments=True, skip_whitespace=True
            )
            pending.extend(reversed(children))
    return flattened


# ───────────────────────── rule handlers ─────────────────────────

def _import_target(rule, base_url: str) -> Optional[str]:
    """``@import url(x)``, ``@import url("x")`` or ``@import "x"``; media queries ignored."""
    tokens = _meaningful(rule.prelude)
    if not tokens:
        return None
    head = tokens[0]
    if head.type in ("url", "string"):
        raw = head.value
    elif head.type == "function" and head.lower_name == "url":
        raw = _first_argument(head)
    else:
        return None
    if not raw:
        return None
    return _resolve_http(raw, base_url)


def _declarations(rule) -> dict:
    """lower-cased property → value tokens; the first occurrence wins."""
    found = {}
    if rule.content is None:
        return found
    for node in tinycss2.parse_declaration_list(
        rule.content, skip_comments=True, skip_whitespace=True
    ):
        if node.type != "declaration":
            continue
        found.setdefault(node.lower_name, node.value)
    return found


def _family_from_tokens(tokens) -> str:
    meaningful = _meaningful(tokens)
    if len(meaningful) == 1 and meaningful[0].type == "string":
        return meaningful[0].value.strip()
    return normalize_family_name(_value_text(tokens))


def _split_sources(tokens) -> List[list]:
    """Split a ``src`` value on its top-level commas."""
    groups: List[list] = [[]]
    for token in tokens:
        if token.type == "literal" and token.value == ",":
            groups.append([])
        else:
            groups[-1].append(token)
    return [group for group in groups if _meaningful(group)]


def _source_url_and_format(group):
    url = None
    format_hint = None
    for token in group:
        if token.type == "url":
            url = token.value
        elif token.type == "function":
            if token.lower_name == "url":
                url = _first_argument(token)
            elif token.lower_name == "format":
                format_hint = _first_argument(token)
    return url, format_hint


def _font_face_sources(rule, base_url: str) -> List[ExtractedFontSource]:
    declarations = _declarations(rule)
    family_tokens = declarations.get("font-family")
    src_tokens = declarations.get("src")
    if family_tokens is None or src_tokens is None:
        return []

    family = _family_from_tokens(family_tokens)
    if not family:
        return []

    style_tokens = declarations.get("font-style")
    weight_tokens = declarations.get("font-weight")
    range_tokens = declarations.get("unicode-range")

    style = parse_style_value(_value_text(style_tokens) if style_tokens is not None else None)
    weight = parse_weight_value(_value_text(weight_tokens) if weight_tokens is not None else None)
    unicode_range = _value_text(range_tokens) if range_tokens is not None else None

    sources = []
    for group in _split_sources(src_tokens):
        raw_url, format_hint = _source_url_and_format(group)
        if not raw_url:
            # local("Inter") and friends
            continue
        resolved = _resolve_http(raw_url, base_url)
        if not resolved:
            continue
        sources.append(
            ExtractedFontSource(
                family=family,
                style=style,
                weight=weight,
                format=detect_font_format(resolved, format_hint),
                source_url=resolved,
                unicode_range=unicode_range or None,
            )
        )
    return sources


# ───────────────────────── public API ─────────────────────────

def parse_css_for_fonts(css_text: str, base_url: str) -> ParsedCss:
    """
    Extract ``@import`` targets and ``@font-face`` sources from `css_text`.

    Relative URLs are resolved against `base_url` (the stylesheet's own URL,
    or the page URL for inline styles). Only http/https targets survive.
    """
    result = ParsedCss()
    rules = tinycss2.parse_stylesheet(css_text or "", skip_comments=True, skip_whitespace=True)

    for rule in flatten_rules(rules):
        if rule.type != "at-rule":
            continue
        keyword = rule.lower_at_keyword
        if keyword == "import":
            target = _import_target(rule, base_url)
            if target:
                result.imported_stylesheets.append(target)
        elif keyword == "font-face":
            result.extracted_fonts.extend(_font_face_sources(rule, base_url))

    return result
