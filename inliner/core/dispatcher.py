from urllib.parse import urlparse

from ..models import Source
from ..drivers.base import BaseDriver
from ..drivers.generic import WebDriver
from ..drivers.local import LocalFileDriver
from ..drivers.webarchive import WebArchiveDriver

class DriverDispatcher:
    @staticmethod
    def get_driver(source: Source) -> BaseDriver:
        location = source.location or ""
        parsed = urlparse(location)

        # 1. Remote pages
        if parsed.scheme in ("http", "https"):
            return WebDriver()

        # 2. Archives by extension
        if location.lower().endswith(".webarchive"):
            return WebArchiveDriver()

        # 3. Anything else on disk
        return LocalFileDriver()
