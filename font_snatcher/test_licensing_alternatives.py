import json
import os
import tempfile

from django.test import SimpleTestCase

from .alternatives_utils import (
    category_compatibility,
    infer_category_from_family,
    name_score,
    parse_weight_range,
    rank_legal_alternatives,
)
from .catalog import FontCatalog, load_catalog, parse_catalog_entry, specimen_url
from .licensing_utils import (
    FREE_OPEN,
    KNOWN_PAID,
    UNKNOWN_LICENSE_NOTE,
    UNKNOWN_OR_PAID,
    build_family_index,
    classify_font_license,
    family_lookup_keys,
)
from .match_utils import build_match_response, create_feature_profile, fnv1a_32

CATALOG_RECORDS = [
    {
        "family": "Inter",
        "category": "sans-serif",
        "styles": ["normal", "italic"],
        "weights": [100, 200, 300, 400, 500, 600, 700, 800, 900],
        "subsets": ["latin"],
    },
    {
        "family": "Krona One",
        "category": "sans-serif",
        "styles": ["normal"],
        "weights": [400],
        "subsets": ["latin"],
    },
    {
        "family": "Merriweather",
        "category": "serif",
        "styles": ["normal", "italic"],
        "weights": [300, 400, 700, 900],
        "subsets": ["latin"],
    },
    {
        "family": "Fira Mono",
        "category": "monospace",
        "styles": ["normal"],
        "weights": [400, 500, 700],
        "subsets": ["latin"],
    },
    {
        "family": "Krub",
        "category": "sans-serif",
        "styles": ["normal", "italic"],
        "weights": [200, 300, 400, 500, 600, 700],
        "subsets": ["latin"],
    },
    {
        "family": "Prosto One",
        "category": "display",
        "styles": ["normal"],
        "weights": [400],
        "subsets": ["latin"],
    },
]

CATALOG = FontCatalog.from_records(CATALOG_RECORDS)


class CatalogTests(SimpleTestCase):
    def test_records_are_validated(self):
        catalog = FontCatalog.from_records(
            CATALOG_RECORDS
            + [
                {"family": "", "category": "serif", "styles": [], "weights": [], "subsets": []},
                {"family": "Bad", "category": "serif", "styles": ["normal"], "weights": [True], "subsets": []},
                "not a record",
            ]
        )
        self.assertEqual(len(catalog), len(CATALOG_RECORDS))

    def test_weights_are_sorted_and_unique(self):
        entry = parse_catalog_entry(
            {"family": " Roboto ", "category": "sans-serif", "styles": ["italic", "normal", "wavy"],
             "weights": [700, 400.0, 400], "subsets": ["latin"]}
        )
        self.assertEqual(entry.family, "Roboto")
        self.assertEqual(entry.weights, (400, 700))
        self.assertEqual(entry.styles, ("italic", "normal"))

    def test_non_list_snapshot_is_rejected(self):
        with self.assertRaises(ValueError):
            FontCatalog.from_records({"family": "Inter"})

    def test_bundled_snapshot_loads(self):
        catalog = load_catalog()
        families = {entry.family for entry in catalog}
        self.assertIn("Inter", families)
        self.assertIn("Merriweather", families)

    def test_bundled_snapshot_covers_the_open_catalog(self):
        catalog = load_catalog()
        self.assertGreater(len(catalog), 1500)

        index = build_family_index(catalog)
        for family in ("Lexend", "Sora", "Barlow Condensed", "Noto Sans JP", "Playwrite US Trad"):
            with self.subTest(family=family):
                result = classify_font_license(family, index, "https://cdn.site/font.woff2")
                self.assertEqual(result.status, FREE_OPEN)

    def test_missing_or_broken_snapshot_gives_empty_catalog(self):
        self.assertEqual(len(load_catalog("/nonexistent/snapshot.json")), 0)

        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as fh:
            fh.write("{not json")
        self.addCleanup(os.remove, fh.name)
        self.assertFalse(load_catalog(fh.name))

    def test_custom_snapshot_path(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as fh:
            json.dump(CATALOG_RECORDS[:2], fh)
        self.addCleanup(os.remove, fh.name)
        self.assertEqual([e.family for e in load_catalog(fh.name)], ["Inter", "Krona One"])

    def test_specimen_url(self):
        self.assertEqual(specimen_url("Open Sans"), "https://fonts.google.com/specimen/Open+Sans")
        self.assertEqual(specimen_url("M PLUS 1p"), "https://fonts.google.com/specimen/M+PLUS+1p")


class ClassifyFontLicenseTests(SimpleTestCase):
    def setUp(self):
        self.index = build_family_index(CATALOG)

    def status(self, family, url="https://cdn.site/font.woff2"):
        return classify_font_license(family, self.index, url).status

    def test_open_families(self):
        self.assertEqual(self.status("Inter", "https://fonts.gstatic.com/s/inter/inter.woff2"), FREE_OPEN)
        self.assertEqual(self.status("Inter Variable", "https://fonts.gstatic.com/s/inter/inter-vf.woff2"), FREE_OPEN)
        self.assertEqual(self.status("  krona   one "), FREE_OPEN)

    def test_open_family_links_to_specimen(self):
        result = classify_font_license("Krona One", self.index)
        self.assertEqual(result.provider, "Google Fonts")
        self.assertEqual(result.license_url, "https://fonts.google.com/specimen/Krona+One")

    def test_paid_service_host(self):
        self.assertEqual(self.status("Paid Brand Font", "https://use.typekit.net/abc.css"), KNOWN_PAID)
        self.assertEqual(self.status("Paid Brand Font", "https://p.typekit.net.evil.example/a.woff2"), UNKNOWN_OR_PAID)
        result = classify_font_license("Paid Brand Font", self.index, "https://use.typekit.net/abc.css")
        self.assertEqual(result.provider, "Adobe Fonts")

    def test_unknown_family(self):
        result = classify_font_license("Paid Brand Font", self.index, "https://cdn.site/pb.woff2")
        self.assertEqual(result.status, UNKNOWN_OR_PAID)
        self.assertEqual(result.note, UNKNOWN_LICENSE_NOTE)
        self.assertIsNone(result.license_url)

    def test_known_paid_families_by_name(self):
        for family in (
            "Berkeley Mono",
            "Proxima Vera",
            "GT America",
            "FF DIN Pro",
            "Neue Haas Grotesk Display",
            "Circular Std",
        ):
            with self.subTest(family=family):
                self.assertEqual(self.status(family), KNOWN_PAID)

    def test_single_word_entries_only_match_as_prefix(self):
        self.assertEqual(self.status("Stuff"), UNKNOWN_OR_PAID)
        self.assertEqual(self.status("Brand GT"), UNKNOWN_OR_PAID)

    def test_lookup_keys(self):
        self.assertEqual(family_lookup_keys("Inter Variable"), ["inter variable", "inter"])
        self.assertEqual(family_lookup_keys("Roboto Flex VF"), ["roboto flex vf", "roboto flex"])
        self.assertEqual(family_lookup_keys("Inter"), ["inter"])


class RankLegalAlternativesTests(SimpleTestCase):
    def test_top_alternative_for_inter_variable(self):
        alternatives = rank_legal_alternatives(
            family="Inter Variable",
            style="italic",
            weight="100 900",
            source_category="sans-serif",
            catalog=CATALOG,
            exclude_families=["inter variable"],
        )

        self.assertLessEqual(len(alternatives), 5)
        self.assertEqual(alternatives[0].family, "Inter")
        self.assertIn("fonts.google.com/specimen/", alternatives[0].google_fonts_url)

    def test_scores_are_differentiated_for_unknown_families(self):
        alternatives = rank_legal_alternatives(
            family="Geist",
            style="normal",
            weight="100 900",
            source_category=None,
            catalog=CATALOG,
            exclude_families=["geist"],
        )

        self.assertEqual(len(alternatives), 5)
        scores = [a.score for a in alternatives]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertGreater(len(set(scores)), 1)
        for score in scores:
            self.assertTrue(20 <= score <= 98)

    def test_excluded_families_never_appear(self):
        alternatives = rank_legal_alternatives(
            family="Krona One",
            style="normal",
            weight=400,
            source_category="sans-serif",
            catalog=CATALOG,
            exclude_families=["KRONA-ONE"],
        )
        self.assertNotIn("Krona One", [a.family for a in alternatives])

    def test_monospace_sources_prefer_monospace(self):
        alternatives = rank_legal_alternatives(
            family="Berkeley Mono",
            style="normal",
            weight=400,
            source_category=None,
            catalog=CATALOG,
        )
        self.assertEqual(alternatives[0].family, "Fira Mono")

    def test_empty_catalog(self):
        self.assertEqual(rank_legal_alternatives("Inter", "normal", 400, None, FontCatalog()), [])

    def test_to_json(self):
        alternative = rank_legal_alternatives("Inter", "normal", 400, "sans-serif", CATALOG)[0]
        self.assertEqual(
            set(alternative.to_json()), {"family", "score", "category", "googleFontsUrl"}
        )

    def test_signals(self):
        self.assertEqual(infer_category_from_family("JetBrains Mono"), "monospace")
        self.assertEqual(infer_category_from_family("Brush Script"), "handwriting")
        self.assertEqual(infer_category_from_family("Times New Roman"), "serif")
        self.assertEqual(infer_category_from_family("Geist"), "sans-serif")
        self.assertEqual(category_compatibility("display", "sans-serif"), 0.75)
        self.assertEqual(category_compatibility(None, "serif"), 0.5)
        self.assertEqual(category_compatibility("serif", "monospace"), 0.3)
        self.assertEqual(parse_weight_range("100 900"), (100.0, 900.0))
        self.assertEqual(parse_weight_range("bold"), (400.0, 400.0))
        self.assertGreater(name_score("Inter Display", "Inter"), name_score("Inter Display", "Krub"))


class MatchResponseTests(SimpleTestCase):
    def test_fnv1a(self):
        self.assertEqual(fnv1a_32(""), 0x811C9DC5)
        self.assertEqual(fnv1a_32("a"), 0xE40C292C)

    def test_profile_is_deterministic_and_bounded(self):
        first = create_feature_profile("Inter", "italic", "100 900", "sans-serif")
        second = create_feature_profile("Inter", "italic", "100 900", "sans-serif")

        self.assertEqual(first, second)
        self.assertEqual(len(first), 15)
        for name, value in first.items():
            with self.subTest(feature=name):
                self.assertTrue(0 <= value <= 1)
        self.assertAlmostEqual(first["weightClass"], 500 / 900)
        self.assertEqual(first["italicAngle"], 0.22)
        self.assertEqual(first["isMonospace"], 0)

    def test_profile_signals(self):
        serif = create_feature_profile("Merriweather", "normal", "400", "serif")
        mono = create_feature_profile("Fira Code", "normal", "bold", None)

        self.assertEqual(serif["serifScore"], 0.75)
        self.assertEqual(serif["panoseSerif"], 0.7)
        self.assertEqual(mono["isMonospace"], 1)
        self.assertAlmostEqual(mono["weightClass"], 400 / 900)

    def test_build_match_response(self):
        payload = build_match_response("Inter Variable", "italic", "100 900", CATALOG)

        self.assertEqual(payload["original"], {"family": "Inter Variable", "weight": "100 900", "style": "italic"})
        self.assertEqual(payload["method"], "feature-similarity")
        self.assertEqual(payload["alternatives"][0]["family"], "Inter")
        first = payload["alternatives"][0]
        self.assertEqual(first["reason"], f"{first['similarity']}% visual match")
        self.assertTrue(first["downloadUrl"].startswith("https://fonts.google.com/specimen/"))

    def test_catalog_family_is_excluded_from_its_own_matches(self):
        payload = build_match_response("Merriweather", "normal", "400", CATALOG)
        families = [a["family"] for a in payload["alternatives"]]
        self.assertNotIn("Merriweather", families)
        self.assertEqual(payload["features"]["serifScore"], 0.75)
