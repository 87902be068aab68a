import os
import re
import base64
import logging
import aiohttp
from dataclasses import dataclass, field
from typing import Dict, Optional

# --- Constants ---
MAX_IMAGE_DIMENSION = 300
JPEG_QUALITY = 95
IMAGE_TIMEOUT = 15.0
PAGE_TIMEOUT = 45.0
PROCESSED_MARKER = "data-processed"
SUPPORTED_OUTPUT_MIMES = {'image/jpeg', 'image/png', 'image/gif'}

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"

# Size, lazy-load and WordPress attributes dropped from inlined images
STRIPPED_IMAGE_ATTRS = [
    'srcset', 'sizes', 'loading', 'width', 'height', 'style', 'class', 'data-attrs',
    'data-orig-size', 'data-medium-file', 'data-large-file',
]

# --- Logging ---
_LOGLEVEL = os.getenv("LOGLEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, _LOGLEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
log = logging.getLogger("inliner")

# --- Errors ---

class InlinerError(Exception):
    """Base class for every error raised by the pipeline."""

class ImageError(InlinerError):
    """Scoped to one candidate; the rewriter turns these into element removal."""

class DecodeError(ImageError):
    pass

class EncodeError(ImageError):
    pass

class FetchError(ImageError):
    pass

class MalformedContainerError(InlinerError):
    pass

class DocumentParseError(InlinerError):
    pass

# --- Data Structures ---

@dataclass
class ResolverConfig:
    """Network and transform defaults handed to resolver constructors."""
    max_dimension: int = MAX_IMAGE_DIMENSION
    jpeg_quality: int = JPEG_QUALITY
    image_timeout: float = IMAGE_TIMEOUT
    user_agent: str = BROWSER_USER_AGENT
    accept: str = IMAGE_ACCEPT
    proxy: Optional[str] = None
    trust_env: bool = True

@dataclass
class ConversionOptions:
    """Configuration passed from the CLI to drivers."""
    no_images: bool = False
    extract: bool = True
    epub: bool = False
    base_url: Optional[str] = None
    archive_fallback: bool = True

@dataclass
class Source:
    """An input: http(s) URL, local HTML file or .webarchive path."""
    location: str
    html: Optional[str] = None

@dataclass
class ConversionContext:
    """Context object holding state for one conversion run."""
    session: aiohttp.ClientSession
    options: ConversionOptions
    config: ResolverConfig = field(default_factory=ResolverConfig)

@dataclass
class ImageCandidate:
    src: str
    width: Optional[int] = None

@dataclass
class ResolvedImage:
    data: bytes
    mime_type: str

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode('ascii')
        return f"data:{self.mime_type};base64,{encoded}"

@dataclass
class ArchiveResource:
    url: str
    mime_type: str
    data: bytes
    text_encoding: Optional[str] = None

@dataclass
class ArchiveTable:
    base_url: Optional[str]
    resources: Dict[str, ArchiveResource] = field(default_factory=dict)

    def add(self, resource: ArchiveResource) -> bool:
        """Insert unless the URL is already present; first occurrence wins."""
        if not resource.url or resource.url in self.resources:
            return False
        self.resources[resource.url] = resource
        return True

    def get(self, url: str) -> Optional[ArchiveResource]:
        return self.resources.get(url)

    def __len__(self):
        return len(self.resources)

@dataclass
class RewriteResult:
    html: str
    image_count: int

@dataclass
class Article:
    title: str
    content_html: str
    source_url: str
    image_count: int = 0
    author: Optional[str] = None
    date: Optional[str] = None
    sitename: Optional[str] = None

# --- Helper Functions ---

_FILENAME_UNSAFE = re.compile(r'[/\\:*?"<>|]')

def title_to_filename(title: str, extension: str = ".html") -> str:
    """Replace characters that are invalid in common filesystems."""
    return _FILENAME_UNSAFE.sub("_", title or "untitled") + extension

_SHELL_ESCAPES = {
    "\\ ": " ", "\\(": "(", "\\)": ")", "\\[": "[", "\\]": "]",
    "\\&": "&", "\\;": ";", "\\'": "'", "\\?": "?", "\\|": "|",
}

def normalize_local_path(path: str) -> str:
    """Undo the quoting/escaping a terminal adds to dragged-in file paths."""
    clean = (path or "").strip()
    if len(clean) >= 2 and clean[0] == clean[-1] and clean[0] in ('"', "'"):
        clean = clean[1:-1]
    for escaped, unescaped in _SHELL_ESCAPES.items():
        clean = clean.replace(escaped, unescaped)
    return clean
