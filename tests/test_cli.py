import base64
import pytest

import main
from inliner.core.settings import SettingsManager
from conftest import image_bytes

@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(SettingsManager, "_instance", None)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)

def test_parse_args_flags():
    args = main.parse_args(["a.html", "--no-images", "--epub", "--max-dim", "120", "--no-fallback"])
    assert args.inputs == ["a.html"]
    assert args.no_images and args.epub and args.no_fallback
    assert args.max_dim == 120

def test_read_inputs_normalizes_paths(tmp_path):
    listing = tmp_path / "inputs.txt"
    listing.write_text("# comment\nhttps://example.com/a\n\n'/tmp/My\\ Page.html'\n")
    args = main.parse_args(["-i", str(listing), "b.webarchive"])
    assert main.read_inputs(args) == ["https://example.com/a", "/tmp/My Page.html", "b.webarchive"]

@pytest.mark.asyncio
async def test_async_main_writes_html(tmp_path):
    uri = "data:image/png;base64," + base64.b64encode(image_bytes(size=(800, 400))).decode()
    page = tmp_path / "page.html"
    page.write_text(f"<html><head><title>Local Page</title></head><body><p>Hi there</p><img src='{uri}'></body></html>")
    out = tmp_path / "result.html"

    code = await main.async_main([str(page), "--no-extract", "-o", str(out), "--max-dim", "100"])

    assert code == 0
    text = out.read_text(encoding="utf-8")
    assert "Hi there" in text
    assert "data:image/png;base64," in text

@pytest.mark.asyncio
async def test_async_main_fails_when_nothing_produced(tmp_path):
    broken = tmp_path / "broken.webarchive"
    broken.write_bytes(b"nope")
    assert await main.async_main([str(broken)]) == 1

@pytest.mark.asyncio
async def test_async_main_without_inputs():
    assert await main.async_main([]) == 1
