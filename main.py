import argparse
import sys
import asyncio
from typing import List
from tqdm import tqdm

from inliner.models import (
    log, Source, ConversionOptions, ConversionContext, Article, ResolverConfig,
    InlinerError, title_to_filename, normalize_local_path
)
from inliner.core.settings import SettingsManager
from inliner.core.dispatcher import DriverDispatcher
from inliner.core.session import get_session
from inliner.core.writer import HtmlWriter, EpubWriter

async def process_sources(sources: List[Source], options: ConversionOptions, config: ResolverConfig, session) -> List[Article]:
    articles = []
    # One input at a time; each document's images are resolved in order
    for source in tqdm(sources, desc="Processing inputs", unit="doc", disable=len(sources) < 2):
        driver = DriverDispatcher.get_driver(source)
        context = ConversionContext(session=session, options=options, config=config)
        try:
            article = await driver.prepare_article(context, source)
        except InlinerError as e:
            log.error(f"Failed to process {source.location}: {e}")
            continue
        if article:
            print(f"{article.title}: {article.image_count} image(s) inlined")
            articles.append(article)
    return articles

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Save web pages, HTML files and webarchives with images inlined")
    parser.add_argument("inputs", nargs='*', help="URL(s), .html or .webarchive file(s)")
    parser.add_argument("-i", "--input-file", help="File with one input per line")
    parser.add_argument("-o", "--output", help="Output filename")
    parser.add_argument("--no-images", action="store_true", help="Drop all images instead of inlining them")
    parser.add_argument("--no-extract", action="store_true", help="Keep the whole page body, skip article extraction")
    parser.add_argument("--epub", action="store_true", help="Write EPUB instead of HTML")
    parser.add_argument("--base-url", help="Base URL for resolving relative image references")
    parser.add_argument("--no-fallback", action="store_true", help="Never fetch images missing from a webarchive")
    parser.add_argument("--max-dim", type=int, default=None, help="Longest image edge in pixels")
    parser.add_argument("--timeout", type=float, default=None, help="Per-image download timeout in seconds")
    parser.add_argument("--proxy", help="HTTP(S) proxy URL")
    parser.add_argument("--config", help="Extra YAML settings file")
    return parser.parse_args(argv)

def output_name(article: Article, args, total: int) -> str:
    ext = ".epub" if args.epub else ".html"
    fname = title_to_filename(article.title, ext)
    if args.output:
        if total == 1: fname = args.output
        else: fname = f"{title_to_filename(article.title, '')}_{args.output}"
    return fname

def read_inputs(args) -> List[str]:
    inputs = []
    if args.input_file:
        with open(args.input_file, 'r') as f:
            inputs.extend([line.strip() for line in f if line.strip() and not line.startswith('#')])
    inputs.extend(args.inputs)
    return [i if i.startswith(("http://", "https://")) else normalize_local_path(i) for i in inputs]

async def async_main(argv=None) -> int:
    args = parse_args(argv)

    inputs = read_inputs(args)
    if not inputs:
        print("No inputs provided.")
        return 1

    options = ConversionOptions(
        no_images=args.no_images,
        extract=not args.no_extract,
        epub=args.epub,
        base_url=args.base_url,
        archive_fallback=not args.no_fallback,
    )
    config = SettingsManager.get_instance(args.config).resolver_config(
        max_dimension=args.max_dim,
        image_timeout=args.timeout,
        proxy=args.proxy,
    )

    sources = [Source(location=i) for i in inputs]
    async with get_session(config) as session:
        articles = await process_sources(sources, options, config, session)

    if not articles:
        log.error("No content was successfully processed.")
        return 1

    writer = EpubWriter if options.epub else HtmlWriter
    for article in articles:
        writer.write(article, output_name(article, args, len(inputs)))
    return 0

def main():
    sys.exit(asyncio.run(async_main()))

if __name__ == "__main__":
    main()
