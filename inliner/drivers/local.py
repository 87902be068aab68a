import os
from typing import Optional

from bs4 import UnicodeDammit

from .base import BaseDriver
from ..models import log, Article, ConversionContext, Source, InlinerError
from ..core.extractor import ArticleExtractor
from ..core.resolvers import NetworkResolver

def read_html_file(path: str) -> str:
    try:
        with open(path, 'rb') as f:
            raw = f.read()
    except OSError as e:
        raise InlinerError(f"cannot read {path}: {e}") from e
    return UnicodeDammit(raw, ["utf-8"]).unicode_markup or ""

class LocalFileDriver(BaseDriver):
    """Saved HTML pages. Relative image refs need --base-url to be fetched."""

    async def prepare_article(self, context: ConversionContext, source: Source) -> Optional[Article]:
        path = os.path.abspath(source.location)
        log.info(f"Local File Driver processing: {path}")
        html = source.html if source.html is not None else read_html_file(path)

        base = context.options.base_url or path
        data = await ArticleExtractor.extract(html, base, context.options.extract)
        resolver = NetworkResolver(context.session, context.config)
        return await self.build_article(context, data, resolver, base)
