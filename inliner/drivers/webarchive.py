import os
from typing import Optional

from .base import BaseDriver
from ..models import log, Article, ConversionContext, Source, InlinerError
from ..core.extractor import ArticleExtractor
from ..core.resolvers import ArchiveResolver, NetworkResolver
from ..core.webarchive import WebArchive, inline_archive_images

class WebArchiveDriver(BaseDriver):
    async def prepare_article(self, context: ConversionContext, source: Source) -> Optional[Article]:
        path = os.path.abspath(source.location)
        log.info(f"WebArchive Driver processing: {path}")
        try:
            with open(path, 'rb') as f:
                contents = f.read()
        except OSError as e:
            raise InlinerError(f"cannot read {path}: {e}") from e

        html, archive_base, table = WebArchive.decode(contents)
        base = context.options.base_url or archive_base or path
        log.info(f"Archive holds {len(table)} subresource(s), base {base}")

        data = await ArticleExtractor.extract(html, base, context.options.extract)
        if data.get('success') and not context.options.no_images:
            data['html'] = inline_archive_images(data['html'], table, base)

        resolver = ArchiveResolver(table, context.config)
        if context.options.archive_fallback:
            resolver = resolver.with_fallback(NetworkResolver(context.session, context.config))
        return await self.build_article(context, data, resolver, base)
