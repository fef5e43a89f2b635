import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class FontSnatcherConfig(AppConfig):
    """
    Owns the process-lifetime objects the views share: the Google Fonts
    catalog, the DNS cache behind the SSRF guard and the proxy signer.
    """

    name = "font_snatcher"
    verbose_name = "Font Snatcher"
    default_auto_field = "django.db.models.BigAutoField"

    catalog = None
    dns_cache = None
    guard = None
    signer = None

    def ready(self):
        from .catalog import load_catalog
        from .proxy_signing import ProxySigner
        from .ssrf_utils import DnsCache, SsrfGuard

        self.catalog = load_catalog(getattr(settings, "FONT_CATALOG_PATH", None))
        self.dns_cache = DnsCache()
        self.guard = SsrfGuard(cache=self.dns_cache)
        self.signer = ProxySigner()
