import asyncio
import html as html_std
import requests
import trafilatura
from bs4 import BeautifulSoup, Comment
from urllib.parse import urlparse
from typing import Optional

from ..models import log, Article, BROWSER_USER_AGENT
from .session import fetch_page, PAGE_HEADERS

# Attributes the image pipeline still needs after cleaning
ALLOWED_ATTRS = {'src', 'srcset', 'sizes', 'href', 'alt', 'title', 'id', 'colspan', 'rowspan', 'width', 'height', 'loading'}

class ArticleExtractor:
    @staticmethod
    def build_meta_block(article: Article) -> str:
        """Source, author, date and site line rendered above the article."""
        url = html_std.escape(article.source_url or '')
        author = html_std.escape(article.author or 'Unknown')
        date = html_std.escape(article.date or 'Unknown')
        site = html_std.escape(article.sitename or urlparse(article.source_url or '').netloc or 'Unknown')
        rows = [
            f"<p><strong>Source:</strong> {url}</p>",
            f"<p><strong>Author:</strong> {author} | <strong>Date:</strong> {date} | <strong>Site:</strong> {site}</p>",
        ]
        return "<div class=\"post-meta\">" + "".join(rows) + "</div>"

    @staticmethod
    async def _requests_fetch(url, proxy: Optional[str] = None):
        try:
            proxies = {"http": proxy, "https": proxy} if proxy else None
            headers = dict(PAGE_HEADERS, **{'User-Agent': BROWSER_USER_AGENT})

            loop = asyncio.get_running_loop()
            def _do_req():
                return requests.get(url, headers=headers, proxies=proxies, timeout=20, allow_redirects=True)

            resp = await loop.run_in_executor(None, _do_req)
            if resp.status_code == 200 and resp.text:
                return resp.text, resp.url
        except requests.RequestException as e:
            log.debug(f"Article requests fetch failed for {url}: {e}")
        return None, None

    @staticmethod
    def extract_from_html(html_content: str, url: str, extract: bool = True) -> dict:
        """Pull the article body and metadata out of a full page.

        With extract=False the cleaned <body> is returned as-is.
        """
        try:
            metadata = trafilatura.extract_metadata(html_content)
        except Exception as e:  # trafilatura surfaces lxml errors untyped
            log.debug(f"Metadata extraction failed for {url}: {e}")
            metadata = None
        try:
            soup = BeautifulSoup(html_content, 'lxml')
            page_title = soup.title.get_text(strip=True) if soup.title else None

            content_soup = ArticleExtractor._smart_selector_extract(soup) if extract else None

            extracted_html = None
            if content_soup:
                ArticleExtractor._clean_soup(content_soup)
                extracted_html = str(content_soup)
            elif extract:
                log.info("Selectors failed, falling back to Trafilatura extraction.")
                extracted_html = trafilatura.extract(html_content, include_images=True, include_tables=True, output_format='html')

            if not extracted_html or len(extracted_html) < 50:
                body = soup.body or soup
                if extract:
                    log.warning("Extraction returned empty. Using full body as fallback.")
                ArticleExtractor._clean_soup(body)
                extracted_html = body.decode_contents() if body is soup.body else str(body)
                if not body.get_text(strip=True) and not body.find(['img', 'picture', 'source']):
                    raise ValueError("Content too short")

            return {
                'success': True,
                'title': (metadata.title if metadata else None) or page_title,
                'author': metadata.author if metadata else None,
                'date': metadata.date if metadata else None,
                'sitename': metadata.sitename if metadata else None,
                'html': extracted_html,
                'error': None
            }
        except ValueError as e:
            return {'success': False, 'html': None, 'error': str(e)}

    @staticmethod
    def _smart_selector_extract(soup):
        selectors = ['article', '[data-qa="article-body"]', '[role="main"]', 'main', '.main-content', '.post-content', '.entry-content', '#main', '#content', '.article-body']
        for selector in selectors:
            found = soup.select_one(selector)
            if found and len(found.get_text(strip=True)) > 200:
                log.info(f"Found content using selector: '{selector}'")
                return found
        return None

    @staticmethod
    def _clean_soup(soup):
        for tag in soup(['script', 'style', 'noscript', 'iframe', 'footer', 'nav', 'aside', 'form', 'button']):
            tag.decompose()
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        for tag in soup.find_all(True):
            for attr in list(tag.attrs.keys()):
                if attr not in ALLOWED_ATTRS and not attr.startswith('data-'):
                    del tag[attr]

        for div in soup.find_all('div'):
            if div.decomposed or div.has_attr('id'):
                continue
            if not div.get_text(strip=True) and not div.find(['img', 'figure', 'picture', 'source']):
                div.decompose()

    @staticmethod
    async def extract(html_content: str, url: str, extract: bool = True) -> dict:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, ArticleExtractor.extract_from_html, html_content, url, extract)
        result['source_url'] = url
        return result

    @staticmethod
    async def get_article_content(session, url, raw_html: Optional[str] = None, extract: bool = True, proxy: Optional[str] = None) -> dict:
        if raw_html:
            log.info("Using pre-fetched HTML content.")
            return await ArticleExtractor.extract(raw_html, url, extract)

        raw_html, final_url = await fetch_page(session, url, proxy=proxy)
        if not raw_html:
            log.warning(f"aiohttp failed for {url}, trying requests fallback...")
            raw_html, final_url = await ArticleExtractor._requests_fetch(url, proxy)

        if not raw_html:
            return {'success': False, 'html': None, 'error': f"Could not retrieve {url}", 'source_url': url}
        return await ArticleExtractor.extract(raw_html, final_url or url, extract)
