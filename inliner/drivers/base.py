from abc import ABC, abstractmethod
from typing import Optional

from ..models import log, Article, ConversionContext, Source
from ..core.resolvers import ImageResolver
from ..core.rewriter import DomRewriter

class BaseDriver(ABC):
    @abstractmethod
    async def prepare_article(self, context: ConversionContext, source: Source) -> Optional[Article]:
        pass

    @staticmethod
    async def build_article(context: ConversionContext, data: dict, resolver: Optional[ImageResolver],
                            base_url: Optional[str]) -> Optional[Article]:
        """Run the image rewriter over extracted content and wrap the result."""
        if not data.get('success'):
            log.error(f"Failed to extract content for {data.get('source_url')}: {data.get('error')}")
            return None

        rewriter = DomRewriter(resolver, context.config, show_progress=True)
        result = await rewriter.rewrite(data['html'], base_url, include_images=not context.options.no_images)

        return Article(
            title=data.get('title') or "Untitled Webpage",
            content_html=result.html,
            source_url=data.get('source_url') or base_url or "",
            image_count=result.image_count,
            author=data.get('author'),
            date=data.get('date'),
            sitename=data.get('sitename'),
        )
