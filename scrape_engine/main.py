"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

import orjson

from scrape_engine.config import Config, config
from scrape_engine.fetch.models import ScrapeTarget, SelectorConfig, SelectorType
from scrape_engine.jobs.models import AIOptions, ExportOptions, JobStatus, PaginationOptions, ScrapeOptions
from scrape_engine.logging_conf import setup_logging
from scrape_engine.parse.url_list import extract_urls, split_valid
from scrape_engine.services import Services, build_services
from scrape_engine.store.file_export import EXTENSIONS

EXPORT_FORMATS = list(EXTENSIONS)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Scrape Engine")
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Log level (default: {config.LOG_LEVEL})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--port", type=int, default=config.PORT)

    scrape = sub.add_parser("scrape", help="Batch-scrape URLs listed in a file")
    scrape.add_argument("urls_file", type=Path, help="Text file with one URL per line, CSV (first column) or JSON")
    scrape.add_argument(
        "--selector",
        action="append",
        default=[],
        metavar="ID=CSS",
        help="Selector to extract, repeatable (default: title=title)",
    )
    scrape.add_argument(
        "--type",
        choices=[t.value for t in SelectorType],
        default=SelectorType.TEXT.value,
        help="Selector type applied to every --selector",
    )
    scrape.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Targets per batch (default: {config.BATCH_SIZE})",
    )
    scrape.add_argument(
        "--batch-delay",
        type=float,
        default=None,
        help=f"Pause between batches in seconds (default: {config.BATCH_DELAY})",
    )
    scrape.add_argument("--format", choices=EXPORT_FORMATS, default="json")
    scrape.add_argument("--output", default=None, help="Output filename (default: generated)")

    job = sub.add_parser("job", help="Run a single scrape job and print it as JSON")
    job.add_argument("url")
    job.add_argument("--images", action="store_true", help="Collect image URLs")
    job.add_argument("--videos", action="store_true", help="Collect video URLs")
    job.add_argument("--links", action="store_true", help="Collect links")
    job.add_argument("--skip-headers-footers", action="store_true")
    job.add_argument("--ai", action="store_true", help="Request summary and keywords from the AI worker")
    job.add_argument("--export", choices=EXPORT_FORMATS, default=None)
    job.add_argument("--timeout", type=float, default=None, help="Job deadline in seconds")
    job.add_argument("--next-selector", default=None, help="CSS selector of the next-page link; enables pagination")
    job.add_argument("--max-pages", type=int, default=5)

    return parser.parse_args(argv)


def parse_selectors(pairs: list[str], selector_type: str) -> list[SelectorConfig]:
    """Turn ``ID=CSS`` pairs into selector configs."""
    if not pairs:
        pairs = ["title=title"]
    selectors = []
    for pair in pairs:
        selector_id, sep, css = pair.partition("=")
        if not sep or not selector_id or not css:
            raise ValueError(f"Invalid selector {pair!r}, expected ID=CSS")
        selectors.append(
            SelectorConfig(id=selector_id, selector=css, name=selector_id, type=SelectorType(selector_type))
        )
    return selectors


def read_urls(path: Path) -> list[str]:
    """Valid URLs listed in a text, CSV or JSON file."""
    urls, invalid = split_valid(extract_urls(path.read_text(encoding="utf-8"), path.name))
    for url in invalid:
        logger.warning(f"Skipping invalid URL {url}")
    return urls


async def run_scrape(services: Services, args: argparse.Namespace) -> int:
    selectors = parse_selectors(args.selector, args.type)
    targets = [ScrapeTarget(url=url, selectors=selectors) for url in read_urls(args.urls_file)]
    if not targets:
        logger.error(f"No URLs found in {args.urls_file}")
        return 1
    if args.batch_size is not None:
        services.scheduler.batch_size = args.batch_size
    if args.batch_delay is not None:
        services.scheduler.batch_delay = args.batch_delay

    results = await services.scheduler.scrape_many(targets)
    path = await services.exporter.export(
        [result.to_wire() for result in results],
        filename=args.output,
        fmt=args.format,
    )
    failed = sum(1 for result in results if not result.success)
    logger.info(f"Scraped {len(results)} targets ({failed} failed), results written to {path}")
    services.metrics.report()
    return 0 if failed < len(results) else 1


async def run_job(services: Services, args: argparse.Namespace) -> int:
    options = ScrapeOptions(
        url=args.url,
        scrape_images=args.images,
        scrape_videos=args.videos,
        include_links=args.links,
        skip_headers_footers=args.skip_headers_footers,
        timeout_seconds=args.timeout,
        ai_options=AIOptions(enabled=args.ai, generate_summary=args.ai, extract_keywords=args.ai),
        export_options=ExportOptions(format=args.export) if args.export else None,
        pagination=PaginationOptions(
            enabled=bool(args.next_selector),
            next_button_selector=args.next_selector,
            max_pages=args.max_pages,
        ),
    )
    job_id = await services.controller.start(options)
    job = await services.controller.wait(job_id)
    print(orjson.dumps(job.to_wire(), option=orjson.OPT_INDENT_2).decode())
    return 0 if job.status == JobStatus.COMPLETED else 1


async def run_command(args: argparse.Namespace) -> int:
    services = build_services()
    try:
        if args.command == "scrape":
            return await run_scrape(services, args)
        return await run_job(services, args)
    finally:
        await services.aclose()


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.command == "serve":
        import uvicorn

        logger.info(f"Serving API on {args.host}:{args.port}")
        uvicorn.run("scrape_engine.api.main:app", host=args.host, port=args.port)
        return

    try:
        code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
