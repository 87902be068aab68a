import asyncio
import aiohttp
import socket
from contextlib import asynccontextmanager
from typing import Dict, Optional
from aiohttp.resolver import ThreadedResolver

from ..models import log, ResolverConfig, PAGE_TIMEOUT, BROWSER_USER_AGENT

PAGE_HEADERS = {
    'User-Agent': BROWSER_USER_AGENT,
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}

@asynccontextmanager
async def get_session(config: Optional[ResolverConfig] = None):
    config = config or ResolverConfig()
    # Threaded DNS and IPv4 only; trust_env picks up HTTP(S)_PROXY
    connector = aiohttp.TCPConnector(
        resolver=ThreadedResolver(),
        ttl_dns_cache=300,
        family=socket.AF_INET
    )
    async with aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=PAGE_TIMEOUT),
        connector=connector,
        trust_env=config.trust_env,
    ) as session:
        yield session

async def fetch_page(
    session,
    url,
    response_type='text',
    extra_headers: Optional[Dict[str, str]] = None,
    proxy: Optional[str] = None,
    max_retries: int = 1,
    backoff: float = 2.0,
):
    """GET a page; returns (body, final_url) or (None, url) after the last failure."""
    headers = dict(PAGE_HEADERS)
    if extra_headers:
        headers.update(extra_headers)

    for attempt in range(max_retries):
        try:
            async with session.get(url, headers=headers, proxy=proxy, allow_redirects=True) as response:
                final_url = str(response.url)
                if response.status >= 400:
                    log.warning(f"HTTP {response.status} for {url}")
                    return None, final_url
                if response_type == 'bytes':
                    return await response.read(), final_url
                return await response.text(errors='replace'), final_url
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            if attempt + 1 == max_retries:
                log.warning(f"Fetch failed for {url}: {e}")
                return None, url
            wait = backoff * (2 ** attempt)
            log.warning(f"Attempt {attempt + 1}/{max_retries} failed for {url}: {e}. Retrying in {wait}s.")
            await asyncio.sleep(wait)
    return None, url
