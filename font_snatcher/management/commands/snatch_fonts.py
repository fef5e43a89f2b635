import json

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError
from rich.console import Console
from rich.table import Table

from font_snatcher.errors import UserFacingError
from font_snatcher.response_utils import extract_fonts_response
from font_snatcher.utils import normalize_input_url


def print_table(report: dict, console: Console) -> None:
    """Pretty-print the extracted fonts as a `rich` table."""
    tab = Table(title=f"Fonts on {report['site']['normalizedUrl']}")
    tab.add_column("family")
    tab.add_column("style")
    tab.add_column("weight")
    tab.add_column("format")
    tab.add_column("license")
    tab.add_column("source host")
    for font in report["fonts"]:
        tab.add_row(
            font["family"],
            font["style"],
            "" if font["weight"] is None else str(font["weight"]),
            font["format"],
            font["licenseStatus"],
            font["sourceHost"],
        )
    console.print(tab)

    stats = report["stats"]
    console.print(
        f"{stats['uniqueFontCount']} unique fonts from {stats['fontFaceCount']} "
        f"@font-face sources in {stats['stylesheetCount']} stylesheets."
    )
    for warning in report["site"]["warnings"]:
        console.print(f"[yellow]warning:[/yellow] {warning}")


class Command(BaseCommand):
    help = "Crawl a web page and list the fonts it loads."

    def add_arguments(self, parser):
        parser.add_argument("url", help="Page to inspect, e.g. linear.app")
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print the full /api/extract-fonts payload instead of a table.",
        )

    def handle(self, *args, **options):
        services = apps.get_app_config("font_snatcher")
        try:
            url = normalize_input_url(options["url"])
            services.guard.assert_safe_target_url(url)
            report = extract_fonts_response(
                url,
                catalog=services.catalog,
                signer=services.signer,
                guard=services.guard,
            )
        except UserFacingError as exc:
            raise CommandError(str(exc))

        if options["json"]:
            self.stdout.write(json.dumps(report, indent=2))
            return

        print_table(report, Console())
