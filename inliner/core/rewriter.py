from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup
from tqdm import tqdm

from ..models import (
    log, PROCESSED_MARKER, STRIPPED_IMAGE_ATTRS,
    ImageCandidate, ImageError, DocumentParseError, ResolverConfig, RewriteResult
)
from ..utils.html import (
    parse_srcset_with_width, extract_url_from_data_attrs, is_image_data_uri
)
from .resolvers import ImageResolver
from .transform import process_data_uri

IMAGE_BEARING_TAGS = ['img', 'figure', 'picture', 'source']

def _remove(tag: Tag) -> None:
    if not tag.decomposed:
        tag.decompose()

def strip_image_attributes(img_tag: Tag) -> None:
    for attr in STRIPPED_IMAGE_ATTRS:
        if img_tag.has_attr(attr):
            del img_tag[attr]

class DomRewriter:
    """Rewrites every image reference of an article body into an inlined data URI.

    Three passes run in order: <picture> collapsing, <img> processing and
    orphan <source> conversion. Each pass first decides the fate of every
    element it matched and only then mutates the tree. An element whose
    candidates all fail is removed, never left pointing at a remote URL.
    """

    def __init__(self, resolver: Optional[ImageResolver], config: Optional[ResolverConfig] = None,
                 show_progress: bool = False):
        self.resolver = resolver
        self.config = config or ResolverConfig()
        self.show_progress = show_progress

    async def rewrite(self, html: str, base_url: Optional[str] = None, include_images: bool = True) -> RewriteResult:
        soup = self.parse(html)

        image_count = 0
        if include_images:
            image_count += await self.collapse_pictures(soup, base_url)
            image_count += await self.process_images(soup, base_url)
            image_count += await self.process_orphan_sources(soup, base_url)

            for tag in soup.find_all(['source', 'picture']):
                _remove(tag)
            for fig in soup.find_all('figure'):
                if not fig.decomposed and not fig.find('img'):
                    _remove(fig)
        else:
            for tag in soup.find_all(IMAGE_BEARING_TAGS):
                _remove(tag)

        for svg in soup.find_all('svg'):
            _remove(svg)
        for anchor in soup.find_all('a'):
            anchor.unwrap()

        log.info(f"Inlined {image_count} image(s)")
        body = soup.body
        return RewriteResult(html=body.decode_contents() if body else soup.decode(), image_count=image_count)

    @staticmethod
    def parse(html: str) -> BeautifulSoup:
        if html is None:
            raise DocumentParseError("No document to parse")
        try:
            return BeautifulSoup(html, 'html.parser')
        except ParserRejectedMarkup as e:
            raise DocumentParseError(f"failed to parse content: {e}") from e

    async def _try_resolve(self, raw: str, base_url: Optional[str]) -> Optional[str]:
        if not raw:
            return None
        try:
            if is_image_data_uri(raw):
                return process_data_uri(raw, self.config)
            if self.resolver is None:
                return None
            return await self.resolver.resolve_image(raw, base_url)
        except ImageError as e:
            log.debug(f"Candidate {raw[:80]} unresolved: {e}")
            return None

    async def _resolve_first(self, candidates: List[ImageCandidate], base_url: Optional[str]) -> Optional[str]:
        for cand in candidates:
            data_uri = await self._try_resolve(cand.src, base_url)
            if data_uri:
                return data_uri
        return None

    @staticmethod
    def _data_attrs_candidate(img: Tag) -> List[ImageCandidate]:
        raw = extract_url_from_data_attrs(img.get('data-attrs'))
        return [ImageCandidate(raw)] if raw else []

    @staticmethod
    def _srcset_candidate(tag: Tag) -> List[ImageCandidate]:
        srcset = (tag.get('srcset') or '').strip()
        pairs = parse_srcset_with_width(srcset)
        if not pairs:
            return []
        width, url = pairs[0]
        return [ImageCandidate(url, width or None)]

    @staticmethod
    def _src_candidate(tag: Tag) -> List[ImageCandidate]:
        src = (tag.get('src') or '').strip()
        return [ImageCandidate(src)] if src else []

    @staticmethod
    def picture_candidates(pic: Tag) -> List[ImageCandidate]:
        """data-attrs, widest srcset entry and src of the <img>, then each <source>."""
        candidates = []
        img = pic.find('img')
        if img:
            candidates += DomRewriter._data_attrs_candidate(img)
            candidates += DomRewriter._srcset_candidate(img)
            candidates += DomRewriter._src_candidate(img)
        for source in pic.find_all('source'):
            candidates += DomRewriter._srcset_candidate(source)
            candidates += DomRewriter._src_candidate(source)
        return candidates

    @staticmethod
    def image_candidates(img: Tag) -> List[ImageCandidate]:
        return DomRewriter._data_attrs_candidate(img) + DomRewriter._src_candidate(img)

    @staticmethod
    def orphan_source_candidates(source: Tag) -> List[ImageCandidate]:
        candidates = [ImageCandidate(url, width or None)
                      for width, url in parse_srcset_with_width(source.get('srcset') or '')]
        candidates += DomRewriter._src_candidate(source)
        return candidates

    async def collapse_pictures(self, soup: BeautifulSoup, base_url: Optional[str]) -> int:
        decisions: List[Tuple[Tag, Optional[str], Optional[str]]] = []
        for pic in soup.find_all('picture'):
            # Nested pictures go away with their outermost ancestor
            if pic.find_parent('picture'):
                continue
            img = pic.find('img')
            alt = img.get('alt') if img else None
            candidates = self.picture_candidates(pic)
            data_uri = await self._resolve_first(candidates, base_url) if candidates else None
            if not data_uri:
                log.debug(f"No resolvable candidate for <picture> ({len(candidates)} tried)")
            decisions.append((pic, data_uri, alt))

        processed = 0
        for pic, data_uri, alt in decisions:
            if not data_uri:
                _remove(pic)
                continue
            attrs = {'src': data_uri}
            if alt:
                attrs['alt'] = alt
            attrs[PROCESSED_MARKER] = "1"
            pic.replace_with(soup.new_tag('img', attrs=attrs))
            processed += 1
        return processed

    async def process_images(self, soup: BeautifulSoup, base_url: Optional[str]) -> int:
        decisions: List[Tuple[Tag, str, Optional[str]]] = []
        img_tags = soup.find_all('img')
        for img in tqdm(img_tags, desc="Inlining images", unit="img", leave=False, disable=not self.show_progress):
            if img.get(PROCESSED_MARKER) == "1" and is_image_data_uri(img.get('src') or ''):
                decisions.append((img, 'processed', None))
                continue
            candidates = self.image_candidates(img)
            data_uri = await self._resolve_first(candidates, base_url) if candidates else None
            decisions.append((img, 'inline' if data_uri else 'remove', data_uri))

        processed = 0
        for img, action, data_uri in decisions:
            if action == 'remove':
                _remove(img)
                continue
            if action == 'inline':
                img['src'] = data_uri
                processed += 1
            strip_image_attributes(img)
            if img.has_attr(PROCESSED_MARKER):
                del img[PROCESSED_MARKER]
        return processed

    async def process_orphan_sources(self, soup: BeautifulSoup, base_url: Optional[str]) -> int:
        decisions: List[Tuple[Tag, Optional[str]]] = []
        for source in soup.find_all('source'):
            if source.find_parent('picture'):
                continue
            candidates = self.orphan_source_candidates(source)
            data_uri = await self._resolve_first(candidates, base_url) if candidates else None
            decisions.append((source, data_uri))

        processed = 0
        for source, data_uri in decisions:
            if not data_uri:
                _remove(source)
                continue
            source.replace_with(soup.new_tag('img', attrs={'src': data_uri}))
            processed += 1
        return processed

async def rewrite_article(html: str, resolver: Optional[ImageResolver], base_url: Optional[str] = None,
                          include_images: bool = True, config: Optional[ResolverConfig] = None) -> RewriteResult:
    return await DomRewriter(resolver, config).rewrite(html, base_url, include_images)
