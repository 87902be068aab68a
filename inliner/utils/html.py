import re
import json
import html as html_std
from typing import List, Optional, Tuple
from urllib.parse import urlparse

_WIDTH_DESCRIPTOR = re.compile(r'^(\d+)w$')

def parse_srcset_entries(srcset: str) -> List[Tuple[str, str]]:
    """Split a srcset into (url, descriptor) pairs.

    URLs run up to the next whitespace, so commas inside data: URIs survive.
    """
    entries = []
    if not srcset:
        return entries
    pos, n = 0, len(srcset)
    while pos < n:
        while pos < n and (srcset[pos].isspace() or srcset[pos] == ','):
            pos += 1
        if pos >= n:
            break
        start = pos
        while pos < n and not srcset[pos].isspace():
            pos += 1
        url = srcset[start:pos]
        descriptor = ''
        if url.endswith(','):
            url = url.rstrip(',')
        else:
            start = pos
            while pos < n and srcset[pos] != ',':
                pos += 1
            descriptor = srcset[start:pos].strip()
        if url:
            entries.append((url, descriptor))
    return entries

def descriptor_width(descriptor: str) -> int:
    match = _WIDTH_DESCRIPTOR.match(descriptor.strip()) if descriptor else None
    return int(match.group(1)) if match else 0

def parse_srcset_with_width(srcset: str) -> List[Tuple[int, str]]:
    """(width, url) pairs, widest first. Untagged entries count as width 0."""
    pairs = [(descriptor_width(d), u) for u, d in parse_srcset_entries(srcset)]
    pairs.sort(key=lambda x: x[0], reverse=True)
    return pairs

def extract_url_from_data_attrs(data_attrs: str) -> Optional[str]:
    """Read the CMS data-attrs JSON blob; srcNoWatermark wins over src."""
    if not data_attrs:
        return None
    try:
        attrs = json.loads(html_std.unescape(data_attrs))
    except ValueError:
        return None
    if not isinstance(attrs, dict):
        return None
    for key in ("srcNoWatermark", "src"):
        value = attrs.get(key)
        if isinstance(value, str) and value:
            return value
    return None

def is_external_url(raw: str) -> bool:
    try:
        return urlparse(raw).scheme in ("http", "https")
    except ValueError:
        return False

def is_image_data_uri(raw: str) -> bool:
    return bool(raw) and raw.startswith("data:image/")
