import uuid
import html as html_std
from ebooklib import epub

from ..models import log, Article
from .extractor import ArticleExtractor

BASE_CSS = """
    body { font-family: sans-serif; margin: 0.5em; background-color: #fdfdfd; line-height: 1.5; }
    img { max-width: 100%; height: auto; }
    figure { margin: 0; text-align: center; }
    figcaption { font-size: 0.8em; color: #666; font-style: italic; margin-top: 0; }
    .post-meta { background: #f5f5f5; padding: 10px; margin-bottom: 20px; border-radius: 5px; font-size: 0.9em; }
    pre { background: #f0f0f0; padding: 10px; overflow-x: auto; font-size: 0.9em; }
    p { margin-top: 0; margin-bottom: 0.4em; }
"""

def render_document(article: Article, stylesheet: str = None) -> str:
    """Full standalone page: title, metadata block, rewritten body."""
    title = html_std.escape(article.title or "Untitled")
    meta_html = ArticleExtractor.build_meta_block(article)
    if stylesheet:
        head_style = f'<link rel="stylesheet" href="{stylesheet}"/>'
    else:
        head_style = f"<style>{BASE_CSS}</style>"
    return (
        f'<!DOCTYPE html><html xmlns="http://www.w3.org/1999/xhtml" lang="en"><head><meta charset="utf-8"/>'
        f"<title>{title}</title>{head_style}</head>"
        f"<body><h1>{title}</h1>{meta_html}<hr/>{article.content_html}</body></html>"
    )

def epub_identifier(article: Article) -> str:
    """Stable across runs for the same source URL."""
    return uuid.uuid5(uuid.NAMESPACE_URL, article.source_url or article.title or "").urn

class HtmlWriter:
    @staticmethod
    def write(article: Article, output_path: str):
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(render_document(article))
        log.info(f"Wrote HTML: {output_path}")

class EpubWriter:
    @staticmethod
    def write(article: Article, output_path: str, custom_css: str = None):
        book = epub.EpubBook()
        book.set_identifier(epub_identifier(article))
        book.set_title(article.title or "Untitled")
        book.set_language('en')
        book.add_author(article.author or article.sitename or "Webpage")

        css = BASE_CSS + (f"\n{custom_css}" if custom_css else "")
        css_item = epub.EpubItem(uid="style_default", file_name="style/default.css", media_type="text/css", content=css)
        book.add_item(css_item)

        # Images are already data URIs in the body, so the book has no image items
        chapter = epub.EpubHtml(title=article.title or "Article", file_name="index.xhtml", lang='en')
        chapter.content = render_document(article, stylesheet="style/default.css")
        chapter.add_item(css_item)
        book.add_item(chapter)

        book.toc = (epub.Link("index.xhtml", article.title or "Article", "chap_index"),)
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = ['nav', chapter]

        epub.write_epub(output_path, book)
        log.info(f"Wrote EPUB: {output_path}")
