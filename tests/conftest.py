import io
import base64
import plistlib
import struct
import zlib
import pytest
from PIL import Image

def image_bytes(size=(40, 20), fmt="PNG", mode="RGB", color=(200, 30, 30)):
    img = Image.new(mode, size, color)
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()

def data_uri_size(data_uri):
    header, _, payload = data_uri.partition(',')
    with Image.open(io.BytesIO(base64.b64decode(payload))) as img:
        return img.size

def webarchive_bytes(main_url, html, subresources=(), encoding="UTF-8", subframes=()):
    archive = {
        "WebMainResource": {
            "WebResourceURL": main_url,
            "WebResourceMIMEType": "text/html",
            "WebResourceTextEncodingName": encoding,
            "WebResourceData": html if isinstance(html, bytes) else html.encode(encoding),
        },
        "WebSubresources": [
            {"WebResourceURL": url, "WebResourceMIMEType": mime, "WebResourceData": data}
            for url, mime, data in subresources
        ],
    }
    if subframes:
        archive["WebSubframeArchives"] = list(subframes)
    return plistlib.dumps(archive)

@pytest.fixture
def png():
    return image_bytes()

@pytest.fixture
def big_png():
    return image_bytes(size=(600, 300))

def oversized_png_header(width=30000, height=20000):
    """Valid PNG signature and IHDR declaring a huge canvas, with no pixel data."""
    def chunk(kind, payload):
        return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", zlib.crc32(kind + payload) & 0xffffffff)
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IEND", b"")

def animated_gif(colors=((255, 0, 0), (0, 255, 0), (0, 0, 255)), size=(20, 20)):
    frames = [Image.new("RGB", size, c) for c in colors]
    out = io.BytesIO()
    frames[0].save(out, format="GIF", save_all=True, append_images=frames[1:], duration=100, loop=0)
    return out.getvalue()
