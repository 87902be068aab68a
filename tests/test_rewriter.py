import base64
import pytest
import aiohttp
from aioresponses import aioresponses
from bs4 import BeautifulSoup

from inliner.models import (
    ResolverConfig, FetchError, DocumentParseError, PROCESSED_MARKER, ArchiveResource, ArchiveTable
)
from inliner.core.resolvers import ImageResolver, NetworkResolver, ArchiveResolver
from inliner.core.transform import process_image_data
from inliner.core.rewriter import DomRewriter, rewrite_article
from conftest import image_bytes, oversized_png_header

class MapResolver(ImageResolver):
    """Serves a fixed set of URLs; everything else fails like a 404."""

    def __init__(self, images):
        self.images = images
        self.calls = []

    async def resolve_image(self, source, base_url):
        self.calls.append(source)
        if source not in self.images:
            raise FetchError(f"404 for {source}")
        return process_image_data(self.images[source], ResolverConfig())

def all_srcs(html):
    soup = BeautifulSoup(html, "html.parser")
    return [img.get("src") for img in soup.find_all("img")]

@pytest.fixture
def resolver(png):
    return MapResolver({
        "https://cdn.example.com/wide.png": png,
        "https://cdn.example.com/plain.png": png,
        "https://cdn.example.com/clean.png": png,
    })

@pytest.mark.asyncio
async def test_picture_collapses_to_widest_resolvable_candidate(resolver):
    html = """<picture>
        <source srcset="https://cdn.example.com/small.png 400w, https://cdn.example.com/wide.png 1200w">
        <img src="https://cdn.example.com/broken.png" alt="A chart">
    </picture>"""
    result = await DomRewriter(resolver).rewrite(html)
    soup = BeautifulSoup(result.html, "html.parser")
    imgs = soup.find_all("img")
    assert result.image_count == 1
    assert len(imgs) == 1
    assert imgs[0]["src"].startswith("data:image/png;base64,")
    assert imgs[0]["alt"] == "A chart"
    assert not imgs[0].has_attr(PROCESSED_MARKER)
    assert soup.find("picture") is None and soup.find("source") is None
    assert resolver.calls == ["https://cdn.example.com/broken.png", "https://cdn.example.com/wide.png"]

@pytest.mark.asyncio
async def test_picture_with_no_resolvable_candidate_is_removed(resolver):
    html = '<p>before</p><picture><source srcset="https://cdn.example.com/x.png"><img src="https://cdn.example.com/y.png"></picture>'
    result = await DomRewriter(resolver).rewrite(html)
    assert result.image_count == 0
    assert "picture" not in result.html and "<img" not in result.html
    assert "before" in result.html

@pytest.mark.asyncio
async def test_data_attrs_prefers_unwatermarked_url(resolver):
    html = """<img src="https://cdn.example.com/plain.png" class="wp-image" width="800"
        data-attrs='{"src": "https://cdn.example.com/plain.png", "srcNoWatermark": "https://cdn.example.com/clean.png"}'>"""
    result = await DomRewriter(resolver).rewrite(html)
    assert resolver.calls == ["https://cdn.example.com/clean.png"]
    img = BeautifulSoup(result.html, "html.parser").find("img")
    assert img["src"].startswith("data:image/png;base64,")
    for attr in ("class", "width", "data-attrs"):
        assert not img.has_attr(attr)

@pytest.mark.asyncio
async def test_unresolvable_image_and_empty_figure_removed(resolver):
    html = '<figure><img src="https://cdn.example.com/gone.png"><figcaption>Caption</figcaption></figure><p>text</p>'
    result = await DomRewriter(resolver).rewrite(html)
    assert "figure" not in result.html
    assert "Caption" not in result.html
    assert "<p>text</p>" in result.html

@pytest.mark.asyncio
async def test_relative_sources_resolved_against_base(png):
    resolver = MapResolver({"img/a.png": png})
    result = await DomRewriter(resolver).rewrite('<img src="img/a.png">', base_url="https://example.com/post")
    assert result.image_count == 1

@pytest.mark.asyncio
async def test_no_dangling_remote_references(resolver):
    html = """<div>
        <img src="https://cdn.example.com/plain.png">
        <img src="https://cdn.example.com/missing.png">
        <img srcset="https://cdn.example.com/wide.png 2x">
        <picture><img src="https://cdn.example.com/also-missing.png"></picture>
        <source srcset="https://cdn.example.com/wide.png">
    </div>"""
    result = await DomRewriter(resolver).rewrite(html)
    srcs = all_srcs(result.html)
    assert srcs
    assert all(src.startswith("data:image/") for src in srcs)
    assert "cdn.example.com" not in result.html

@pytest.mark.asyncio
async def test_existing_processed_marker_is_left_alone(png):
    resolver = MapResolver({})
    uri = "data:image/png;base64," + base64.b64encode(png).decode()
    html = f'<img src="{uri}" {PROCESSED_MARKER}="1" alt="kept">'
    result = await DomRewriter(resolver).rewrite(html)
    img = BeautifulSoup(result.html, "html.parser").find("img")
    assert img["src"] == uri
    assert not img.has_attr(PROCESSED_MARKER)
    assert result.image_count == 0
    assert resolver.calls == []

@pytest.mark.asyncio
async def test_marker_on_remote_src_is_not_trusted(resolver):
    html = f'<img src="https://cdn.example.com/missing.png" {PROCESSED_MARKER}="1">'
    result = await DomRewriter(resolver).rewrite(html)
    assert "<img" not in result.html

@pytest.mark.asyncio
async def test_inline_data_uri_is_reencoded_without_resolver():
    big = image_bytes(size=(900, 300))
    uri = "data:image/png;base64," + base64.b64encode(big).decode()
    result = await DomRewriter(None).rewrite(f'<img src="{uri}">')
    assert result.image_count == 1
    assert all_srcs(result.html)[0] != uri

@pytest.mark.asyncio
async def test_orphan_source_becomes_img(resolver):
    html = '<div><source srcset="https://cdn.example.com/small.png 100w, https://cdn.example.com/wide.png 900w"></div>'
    result = await DomRewriter(resolver).rewrite(html)
    assert result.image_count == 1
    assert "<source" not in result.html
    assert all_srcs(result.html)[0].startswith("data:image/png;base64,")
    assert resolver.calls[0] == "https://cdn.example.com/wide.png"

@pytest.mark.asyncio
async def test_images_disabled_strips_everything(resolver):
    html = """<figure><img src="https://cdn.example.com/plain.png"></figure>
        <picture><source srcset="https://cdn.example.com/wide.png"></picture><p>body</p>"""
    result = await DomRewriter(resolver).rewrite(html, include_images=False)
    for tag in ("<img", "<figure", "<picture", "<source"):
        assert tag not in result.html
    assert result.image_count == 0
    assert resolver.calls == []
    assert "body" in result.html

@pytest.mark.asyncio
async def test_links_unwrapped_and_svg_removed():
    html = '<p>See <a href="https://example.com">the docs</a></p><svg><circle r="1"/></svg>'
    result = await rewrite_article(html, None)
    assert "<a" not in result.html
    assert "See the docs" in result.html
    assert "svg" not in result.html

@pytest.mark.asyncio
async def test_returns_body_inner_html():
    result = await DomRewriter(None).rewrite("<html><head><title>t</title></head><body><p>x</p></body></html>")
    assert result.html == "<p>x</p>"

@pytest.mark.asyncio
async def test_none_document_raises():
    with pytest.raises(DocumentParseError):
        await DomRewriter(None).rewrite(None)

@pytest.mark.asyncio
async def test_picture_with_two_sources_picks_only_resolvable_one(png):
    resolver = MapResolver({"b.jpg": image_bytes(fmt="JPEG")})
    html = """<picture>
        <source srcset="a.jpg 480w"><source srcset="b.jpg 800w">
        <img src="c.jpg">
    </picture>"""
    result = await DomRewriter(resolver).rewrite(html)
    srcs = all_srcs(result.html)
    assert len(srcs) == 1
    assert srcs[0].startswith("data:image/jpeg;base64,")
    assert "b.jpg" in resolver.calls

@pytest.mark.asyncio
async def test_network_and_archive_resolvers_are_interchangeable(png):
    url = "https://example.com/img/a.png"
    html = f'<p>x</p><img src="{url}" alt="a">'

    with aioresponses() as m:
        m.get(url, status=200, body=png, content_type="image/png")
        async with aiohttp.ClientSession() as session:
            from_network = await rewrite_article(html, NetworkResolver(session))

    table = ArchiveTable(base_url=None)
    table.add(ArchiveResource(url=url, mime_type="image/png", data=png))
    from_archive = await rewrite_article(html, ArchiveResolver(table))

    assert from_network.html == from_archive.html
    assert from_network.image_count == from_archive.image_count == 1

@pytest.mark.asyncio
async def test_oversized_image_only_removes_its_element(png):
    bomb = "data:image/png;base64," + base64.b64encode(oversized_png_header()).decode()
    good = "data:image/png;base64," + base64.b64encode(png).decode()
    result = await DomRewriter(None).rewrite(f'<img src="{bomb}"><img src="{good}">')
    assert result.image_count == 1
    assert len(all_srcs(result.html)) == 1

@pytest.mark.asyncio
async def test_malformed_url_only_removes_its_element(png):
    good = "data:image/png;base64," + base64.b64encode(png).decode()
    html = f'<img src="http://[broken/a.png"><img src="{good}">'
    async with aiohttp.ClientSession() as session:
        network = NetworkResolver(session)
        archive = ArchiveResolver(ArchiveTable(base_url="https://example.com/page")).with_fallback(network)
        for resolver in (network, archive):
            result = await DomRewriter(resolver).rewrite(html, base_url="https://example.com/page")
            assert result.image_count == 1
            assert "broken" not in result.html
