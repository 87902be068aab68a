from typing import Optional

from .base import BaseDriver
from ..models import log, Article, ConversionContext, Source
from ..core.extractor import ArticleExtractor
from ..core.resolvers import NetworkResolver

class WebDriver(BaseDriver):
    async def prepare_article(self, context: ConversionContext, source: Source) -> Optional[Article]:
        url = source.location
        log.info(f"Web Driver processing: {url}")
        data = await ArticleExtractor.get_article_content(
            context.session, url, raw_html=source.html,
            extract=context.options.extract, proxy=context.config.proxy
        )
        base = context.options.base_url or data.get('source_url') or url
        resolver = NetworkResolver(context.session, context.config)
        return await self.build_article(context, data, resolver, base)
