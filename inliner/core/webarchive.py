import re
import base64
import codecs
import plistlib
from xml.parsers.expat import ExpatError
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

import filetype
from bs4 import BeautifulSoup, UnicodeDammit

from ..models import log, ArchiveResource, ArchiveTable, MalformedContainerError
from ..utils.html import (
    parse_srcset_entries, extract_url_from_data_attrs, is_external_url
)

CONTENT_NODE_COLON = "/jcr:content/"
CONTENT_NODE_UNDERSCORE = "/_jcr_content/"
_SIZE_TOKEN = re.compile(r'[0-9]+x[0-9]+')

class WebArchive:
    """Decoder for Safari .webarchive property lists."""

    @staticmethod
    def decode(contents: bytes) -> Tuple[str, Optional[str], ArchiveTable]:
        try:
            archive = plistlib.loads(contents)
        except (plistlib.InvalidFileException, ExpatError, ValueError, TypeError, KeyError, IndexError) as e:
            raise MalformedContainerError(f"failed to parse webarchive plist: {e}") from e
        if not isinstance(archive, dict):
            raise MalformedContainerError("webarchive root is not a dictionary")

        main = WebArchive._main_record(archive)
        base_url = WebArchive._parse_base_url(main.url if main else "")

        table = ArchiveTable(base_url=base_url)
        WebArchive._collect(table, archive)
        log.debug(f"Decoded webarchive base={base_url} resources={len(table)}")

        html = WebArchive.decode_text_resource(main.data, main.text_encoding) if main else ""
        return html, base_url, table

    @staticmethod
    def _to_resource(record: Any) -> Optional[ArchiveResource]:
        if not isinstance(record, dict):
            return None
        data = record.get("WebResourceData") or b""
        if isinstance(data, str):
            data = data.encode("utf-8")
        return ArchiveResource(
            url=str(record.get("WebResourceURL") or ""),
            mime_type=str(record.get("WebResourceMIMEType") or ""),
            data=bytes(data),
            text_encoding=record.get("WebResourceTextEncodingName") or None,
        )

    @staticmethod
    def _main_record(archive: Dict[str, Any]) -> Optional[ArchiveResource]:
        web_main = WebArchive._to_resource(archive.get("WebMainResource"))
        if web_main and (web_main.url or web_main.data):
            return web_main
        return WebArchive._to_resource(archive.get("MainResource"))

    @staticmethod
    def _parse_base_url(raw: str) -> Optional[str]:
        if not raw:
            return None
        try:
            urlsplit(raw)
        except ValueError:
            log.warning(f"Ignoring unparsable webarchive URL: {raw!r}")
            return None
        return raw

    @staticmethod
    def _collect(table: ArchiveTable, archive: Dict[str, Any]) -> None:
        for key in ("Subresources", "WebSubresources"):
            for record in archive.get(key) or []:
                res = WebArchive._to_resource(record)
                if res and not table.add(res) and res.url:
                    log.debug(f"Duplicate webarchive resource dropped: {res.url}")
        # Sub-frame provenance is not kept
        for sub in archive.get("WebSubframeArchives") or []:
            if isinstance(sub, dict):
                WebArchive._collect(table, sub)

    @staticmethod
    def decode_text_resource(data: bytes, encoding_name: Optional[str]) -> str:
        """Transcode the main document; fall back to bs4 sniffing on failure."""
        if encoding_name:
            try:
                codec = codecs.lookup(encoding_name)
                decoded = data.decode(codec.name)
                if decoded:
                    return decoded
            except (LookupError, UnicodeDecodeError) as e:
                log.debug(f"Could not transcode main resource from {encoding_name}: {e}")
        dammit = UnicodeDammit(data)
        if dammit.unicode_markup is not None:
            return dammit.unicode_markup
        return data.decode("utf-8", errors="replace")

def effective_mime(resource: ArchiveResource) -> str:
    """Stored MIME type, or one sniffed from the byte header."""
    if resource.mime_type:
        return resource.mime_type.split(';')[0].strip().lower()
    if not resource.data:
        return ""
    return filetype.guess_mime(resource.data) or ""

def is_image_resource(resource: ArchiveResource) -> bool:
    return effective_mime(resource).startswith("image/")

def resource_to_data_uri(resource: ArchiveResource) -> Optional[str]:
    """Raw (untransformed) data URI for an image resource."""
    mime = effective_mime(resource)
    if not mime.startswith("image/"):
        return None
    encoded = base64.b64encode(resource.data).decode("ascii")
    return f"data:{mime};base64,{encoded}"

def strip_size_suffix(path: str) -> str:
    """'/img/photo-800x600.jpg' -> '/img/photo.jpg'."""
    head, sep, name = path.rpartition('/')
    dot = name.rfind('.')
    if dot == -1:
        return path
    stem, ext = name[:dot], name[dot:]
    dash = stem.rfind('-')
    if dash == -1 or not _SIZE_TOKEN.fullmatch(stem[dash + 1:]):
        return path
    return f"{head}{sep}{stem[:dash]}{ext}"

def content_node_variants(path: str) -> List[str]:
    """Alternate spellings of the content-node segment, underscore first."""
    variants = []
    if CONTENT_NODE_COLON in path:
        variants.append(path.replace(CONTENT_NODE_COLON, CONTENT_NODE_UNDERSCORE))
    if CONTENT_NODE_UNDERSCORE in path:
        variants.append(path.replace(CONTENT_NODE_UNDERSCORE, CONTENT_NODE_COLON))
    return variants

def asset_root(path: str) -> str:
    cut = len(path)
    for marker in (CONTENT_NODE_COLON, CONTENT_NODE_UNDERSCORE):
        idx = path.find(marker)
        if idx != -1:
            cut = min(cut, idx)
    return path[:cut]

def find_resource_by_asset(path: str, table: ArchiveTable) -> Optional[ArchiveResource]:
    """Largest image payload whose path starts with the asset root."""
    if not path:
        return None
    root = asset_root(path)
    best, best_len = None, 0
    for res in table.resources.values():
        if not res.url or not is_image_resource(res):
            continue
        try:
            res_path = urlsplit(res.url).path
        except ValueError:
            continue
        if not res_path or not res_path.startswith(root):
            continue
        if len(res.data) > best_len:
            best, best_len = res, len(res.data)
    return best

def find_resource(raw: str, table: ArchiveTable, base_url: Optional[str] = None) -> Optional[ArchiveResource]:
    """Look up a source string in the archive, tolerating CMS rendition URLs.

    Tried in order: the resolved URL, its content-node respelling, the same two
    with a -WxH suffix stripped, the largest image under the asset root, and
    finally the raw string as a literal key.
    """
    if not raw:
        return None
    base = base_url or table.base_url
    try:
        absolute = urljoin(base, raw) if base else raw
        parts = urlsplit(absolute)
    except ValueError:
        parts = None

    if parts is not None:
        hit = table.get(absolute)
        if hit:
            return hit
        for variant in content_node_variants(parts.path):
            hit = table.get(urlunsplit(parts._replace(path=variant)))
            if hit:
                return hit

        if parts.path:
            stripped = strip_size_suffix(parts.path)
            if stripped != parts.path:
                for path in [stripped] + content_node_variants(stripped):
                    hit = table.get(urlunsplit(parts._replace(path=path)))
                    if hit:
                        return hit

        hit = find_resource_by_asset(parts.path, table)
        if hit:
            log.debug(f"Asset-root match for {raw} -> {hit.url}")
            return hit

    return table.get(raw)

def _inline_srcset(srcset: str, table: ArchiveTable, base_url: Optional[str] = None) -> Optional[str]:
    kept = []
    for url, descriptor in parse_srcset_entries(srcset):
        if url.startswith('data:'):
            data_uri = url
        else:
            res = find_resource(url, table, base_url)
            data_uri = resource_to_data_uri(res) if res else None
        if data_uri:
            kept.append(f"{data_uri} {descriptor}".strip())
    return ", ".join(kept) if kept else None

def inline_archive_images(html: str, table: ArchiveTable, base_url: Optional[str] = None) -> str:
    """Point img/source references at raw archive bytes.

    External references that the archive cannot satisfy are dropped so the
    document never reaches back to the network for them.
    """
    soup = BeautifulSoup(html, 'html.parser')

    def inline_url(raw: str) -> Optional[str]:
        if not raw or raw.startswith('data:'):
            return None
        res = find_resource(raw, table, base_url)
        return resource_to_data_uri(res) if res else None

    for img in soup.find_all('img'):
        inlined_src = None
        updated_srcset = None

        data_attrs = img.get('data-attrs')
        if data_attrs is not None:
            raw = extract_url_from_data_attrs(data_attrs)
            if raw:
                data_uri = inline_url(raw)
                if data_uri:
                    img['src'] = data_uri
                    inlined_src = data_uri
                del img['data-attrs']

        for attr in ('src', 'data-src'):
            value = img.get(attr)
            if value is None:
                continue
            data_uri = inline_url(value)
            if data_uri:
                img[attr] = data_uri
                if not inlined_src:
                    img['src'] = data_uri
                    inlined_src = data_uri
            elif is_external_url(value):
                del img[attr]

        for attr in ('srcset', 'data-srcset'):
            value = img.get(attr)
            if value is None:
                continue
            updated = _inline_srcset(value, table, base_url)
            if updated:
                img[attr] = updated
                updated_srcset = updated_srcset or updated
            else:
                del img[attr]

        if not inlined_src and updated_srcset:
            entries = parse_srcset_entries(updated_srcset)
            if entries:
                img['src'] = entries[0][0]

    for source in soup.find_all('source'):
        value = source.get('src')
        if value is not None:
            data_uri = inline_url(value)
            if data_uri:
                source['src'] = data_uri
            elif is_external_url(value):
                del source['src']
        value = source.get('srcset')
        if value is not None:
            updated = _inline_srcset(value, table, base_url)
            if updated:
                source['srcset'] = updated
            else:
                del source['srcset']

    return str(soup)
