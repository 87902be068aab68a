import asyncio
import mimetypes
from abc import ABC, abstractmethod
from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp

from ..models import log, ArchiveTable, ResolverConfig, FetchError
from .transform import process_image_data, process_data_uri
from .webarchive import find_resource, is_image_resource

class ImageResolver(ABC):
    """Turns a source string plus base URL into an inlined data URI."""

    @abstractmethod
    async def resolve_image(self, source: str, base_url: Optional[str]) -> Optional[str]:
        """Return a data URI, or None when the source is unknown.

        Failures scoped to this one image raise ImageError subclasses.
        """

def guess_mime_from_url(url: str) -> str:
    guessed = mimetypes.guess_type(urlparse(url).path)[0]
    if guessed and guessed.startswith('image/'):
        return guessed
    return 'image/jpeg'

class NetworkResolver(ImageResolver):
    def __init__(self, session: aiohttp.ClientSession, config: Optional[ResolverConfig] = None):
        self.session = session
        self.config = config or ResolverConfig()

    async def fetch_image_data(self, url: str) -> Tuple[bytes, str]:
        """Single bounded GET; no retry."""
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": self.config.accept,
        }
        timeout = aiohttp.ClientTimeout(total=self.config.image_timeout)
        try:
            async with self.session.get(url, headers=headers, timeout=timeout,
                                        proxy=self.config.proxy, allow_redirects=True) as resp:
                if resp.status != 200:
                    raise FetchError(f"image download failed with status: {resp.status}")
                data = await resp.read()
                content_type = resp.headers.get('Content-Type', '').split(';')[0].strip().lower()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FetchError(f"failed to download image {url}: {e!r}") from e
        return data, content_type or guess_mime_from_url(url)

    async def resolve_image(self, source: str, base_url: Optional[str]) -> Optional[str]:
        source = (source or "").strip()
        if not source:
            return None
        if source.startswith('data:'):
            return process_data_uri(source, self.config)

        try:
            url = urljoin(base_url, source) if base_url else source
            scheme = urlparse(url).scheme
        except ValueError as e:
            raise FetchError(f"malformed image URL {source!r}: {e}") from e
        if scheme not in ('http', 'https'):
            raise FetchError(f"unsupported image URL: {url}")

        data, mime = await self.fetch_image_data(url)
        log.debug(f"Fetched {url} ({mime}, {len(data)} bytes)")
        return process_image_data(data, self.config)

class ArchiveResolver(ImageResolver):
    """Serves images from a decoded webarchive, optionally backed by another resolver."""

    def __init__(self, table: ArchiveTable, config: Optional[ResolverConfig] = None,
                 fallback: Optional[ImageResolver] = None):
        self.table = table
        self.config = config or ResolverConfig()
        self.fallback = fallback

    def with_fallback(self, fallback: ImageResolver) -> "ArchiveResolver":
        return ArchiveResolver(self.table, self.config, fallback=fallback)

    async def resolve_image(self, source: str, base_url: Optional[str]) -> Optional[str]:
        source = (source or "").strip()
        if not source:
            return None
        if source.startswith('data:'):
            return process_data_uri(source, self.config)

        base = base_url or self.table.base_url
        res = find_resource(source, self.table, base)
        if res and is_image_resource(res):
            return process_image_data(res.data, self.config)
        if res:
            log.debug(f"Archive hit for {source} is not an image ({res.mime_type})")

        if self.fallback is not None:
            log.debug(f"Archive miss for {source}, trying fallback")
            return await self.fallback.resolve_image(source, base)
        return None
