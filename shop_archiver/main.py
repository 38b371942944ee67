#!/usr/bin/env python3
"""
Shop Archiver - offline archives of e-commerce sites.

Discovers the pages of a shop, captures them in a headless browser together
with their assets, and serves the captured run offline.

Usage:
    python -m shop_archiver.main discover https://shop.example.com ./archive
    python -m shop_archiver.main capture ./archive/_crawl/urls.txt ./archive
    python -m shop_archiver.main serve ./archive --port 8080

Features:
    - Discovery waterfall: product APIs, sitemaps, URL patterns, ID
      enumeration and a breadth-first link crawl
    - Capture with lazy-load scrolling and a network-quiet wait
    - Content-addressed asset store shared by every page of a run
    - Desktop and mobile variants of every page
    - Offline server with fallback resolution and HTML post-processing
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from shop_archiver.crawler.browser import BrowserFetcher, PlaywrightDriver
from shop_archiver.crawler.capture import CaptureEngine, CaptureSummary
from shop_archiver.discovery.bfs import LinkCrawler, stop_file_for, write_crawl_outputs
from shop_archiver.discovery.engine import STRATEGIES, DiscoveryEngine, write_discovery_outputs
from shop_archiver.discovery.http import HttpClient
from shop_archiver.discovery.targets import targets_for_seeds_file
from shop_archiver.utils.config import ArchiverSettings, ConfigError
from shop_archiver.utils.log import (
    create_progress,
    print_error,
    print_info,
    print_status,
    print_success,
    print_warning,
    setup_logger,
)
from shop_archiver.web.app import run_app
from shop_archiver.web.postprocess import bake_run


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_NOTHING_FETCHED = 2
EXIT_CONFIG = 3


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress output except errors'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Also write log lines to this file'
    )


def _add_crawl_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--max-pages', '-m',
        type=int,
        default=None,
        help='Maximum number of pages the link crawl fetches (env MAX_PAGES)'
    )
    parser.add_argument(
        '--depth', '-d',
        type=int,
        default=None,
        help='Maximum link hops from a seed (env MAX_DEPTH)'
    )
    parser.add_argument(
        '--render',
        action='store_true',
        help='Render crawled pages in the browser instead of plain HTTP'
    )


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='shop-archiver',
        description='Archive e-commerce sites for offline viewing',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s discover https://shop.example.com ./archive
    %(prog)s crawl https://shop.example.com --output ./archive --max-pages 50
    %(prog)s capture ./archive/_crawl/urls.txt ./archive --profiles desktop,mobile
    %(prog)s bake ./archive
    %(prog)s serve ./archive --port 8080

Tunables are read from the environment (MAX_PAGES, CONCURRENCY, ASSET_MAX_BYTES, ...);
flags override them.
        """
    )
    commands = parser.add_subparsers(dest='command', metavar='command')
    commands.required = True

    discover = commands.add_parser('discover', help='Find capture targets for a shop')
    discover.add_argument('seed', help='Shop home page URL')
    discover.add_argument('output', help='Run root directory')
    discover.add_argument(
        '--strategies',
        type=str,
        default=None,
        help=f'Comma list of strategies to run (default: {",".join(STRATEGIES)})'
    )
    discover.add_argument(
        '--target-count',
        type=int,
        default=None,
        help='Stop once this many targets are known (env TARGET_COUNT)'
    )
    _add_crawl_options(discover)
    _add_common(discover)

    crawl = commands.add_parser('crawl', help='Breadth-first link crawl only')
    crawl.add_argument('seeds', nargs='+', help='Start URLs')
    crawl.add_argument(
        '--output', '-o',
        type=str,
        required=True,
        help='Run root directory'
    )
    _add_crawl_options(crawl)
    _add_common(crawl)

    capture = commands.add_parser('capture', help='Capture the pages listed in a seeds file')
    capture.add_argument('seeds_file', help='Newline-delimited URLs (e.g. _crawl/urls.txt)')
    capture.add_argument('output', help='Run root directory')
    capture.add_argument(
        '--concurrency', '-c',
        type=int,
        default=None,
        help='Concurrent browser pages (env CONCURRENCY)'
    )
    capture.add_argument(
        '--profiles',
        type=str,
        default=None,
        help='Comma list of device profiles: desktop, mobile (env PROFILES)'
    )
    capture.add_argument(
        '--include-cross-origin',
        action='store_true',
        default=None,
        help='Also store assets served from other sites'
    )
    capture.add_argument(
        '--no-headless',
        action='store_true',
        help='Run browser in visible mode (for debugging)'
    )
    _add_common(capture)

    bake = commands.add_parser('bake', help='Make captured pages static (no client scripts)')
    bake.add_argument('root', help='Run root directory')
    _add_common(bake)

    serve = commands.add_parser('serve', help='Serve a run offline')
    serve.add_argument('root', help='Run root directory')
    serve.add_argument(
        '--host',
        default='127.0.0.1',
        help='Host to bind to (default: 127.0.0.1)'
    )
    serve.add_argument(
        '--port', '-p',
        type=int,
        default=int(os.environ.get('PORT', 8080)),
        help='Port to listen on (default: $PORT or 8080)'
    )
    serve.add_argument(
        '--debug',
        action='store_true',
        help='Enable Flask debug mode'
    )
    _add_common(serve)

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> ArchiverSettings:
    """
    Environment settings with the command line flags applied on top.

    Raises:
        ConfigError: On invalid environment values or flags
    """
    settings = ArchiverSettings.from_env()
    profiles = getattr(args, 'profiles', None)
    return settings.with_overrides(
        max_pages=getattr(args, 'max_pages', None),
        max_depth=getattr(args, 'depth', None),
        target_count=getattr(args, 'target_count', None),
        concurrency=getattr(args, 'concurrency', None),
        include_cross_origin=getattr(args, 'include_cross_origin', None),
        profiles=[p.strip() for p in profiles.split(',') if p.strip()] if profiles else None,
        headless=False if getattr(args, 'no_headless', False) else None,
    )


def print_summary(summary: CaptureSummary, output: str) -> None:
    """
    Print the capture summary.

    Args:
        summary: CaptureSummary of the run
        output: Run root directory
    """
    print_status("=" * 60)
    print_success("CAPTURE SUMMARY")
    print_status("=" * 60)
    print_status(f"  Pages captured:    {summary.ok}/{summary.total}", "")
    print_status(f"  Pages failed:      {summary.failed}", "")
    print_status(f"  Assets stored:     {summary.assets}", "")
    skipped = ", ".join(f"{k}={v}" for k, v in summary.skipped.items() if v)
    print_status(f"  Assets skipped:    {skipped or 'none'}", "")
    print_status(f"  Duration:          {summary.duration_seconds:.1f} seconds", "")
    if summary.stopped:
        print_warning("Run stopped early by STOP file")
    print_status("=" * 60)
    print_success(f"Archive written to: {os.path.abspath(output)}")


async def run_discover(args: argparse.Namespace, settings: ArchiverSettings) -> int:
    strategies = None
    if args.strategies:
        strategies = [s.strip() for s in args.strategies.split(',') if s.strip()]
        unknown = [s for s in strategies if s not in STRATEGIES]
        if unknown:
            raise ConfigError(f"Unknown strategies: {', '.join(unknown)}")

    async with HttpClient(user_agent=settings.user_agent, timeout=settings.http_timeout) as client:
        if args.render:
            async with PlaywrightDriver(settings.headless, settings.user_agent, settings.nav_timeout) as driver:
                engine = DiscoveryEngine(
                    client, settings,
                    page_client=BrowserFetcher(driver, settings.nav_timeout),
                    strategies=strategies,
                    output_dir=args.output
                )
                targets = await engine.discover(args.seed)
        else:
            engine = DiscoveryEngine(client, settings, strategies=strategies, output_dir=args.output)
            targets = await engine.discover(args.seed)

    urls_path = write_discovery_outputs(args.output, args.seed, targets, engine)
    print_success(f"{len(targets)} targets written to {urls_path}")
    return EXIT_OK


async def run_crawl(args: argparse.Namespace, settings: ArchiverSettings) -> int:
    def make_crawler(client) -> LinkCrawler:
        return LinkCrawler(
            client,
            max_pages=settings.max_pages,
            max_depth=settings.max_depth,
            same_site=settings.same_site(args.seeds),
            normalizer=settings.normalizer(),
            allow=settings.allow_pattern,
            deny=settings.deny_pattern,
            concurrency=settings.concurrency,
            stop_file=stop_file_for(args.output)
        )

    if args.render:
        async with PlaywrightDriver(settings.headless, settings.user_agent, settings.nav_timeout) as driver:
            result = await make_crawler(BrowserFetcher(driver, settings.nav_timeout)).crawl(args.seeds)
    else:
        async with HttpClient(user_agent=settings.user_agent, timeout=settings.http_timeout) as client:
            result = await make_crawler(client).crawl(args.seeds)

    crawl_dir = write_crawl_outputs(args.output, result, args.seeds, settings.echo())
    if not result.fetched:
        print_error("No pages were fetched")
        return EXIT_NOTHING_FETCHED
    print_success(f"Crawled {len(result.fetched)} pages, outputs in {crawl_dir}")
    return EXIT_OK


async def run_capture(args: argparse.Namespace, settings: ArchiverSettings) -> int:
    if not os.path.isfile(args.seeds_file):
        raise ConfigError(f"Seeds file not found: {args.seeds_file}")
    targets = targets_for_seeds_file(args.seeds_file)
    if not targets:
        raise ConfigError(f"Seeds file has no URLs: {args.seeds_file}")

    if not args.quiet:
        print_info(f"Targets: {len(targets)}, profiles: {', '.join(settings.profiles)}")
        print_info(f"Output: {args.output}")

    async with PlaywrightDriver(settings.headless, settings.user_agent, settings.nav_timeout) as driver:
        engine = CaptureEngine(driver, args.output, settings)
        with create_progress() as progress:
            task = progress.add_task("Capturing", total=len(targets) * len(settings.profiles))
            summary = await engine.capture_all(
                targets,
                on_record=lambda record: progress.advance(task)
            )

    if not args.quiet:
        print_summary(summary, args.output)
    return EXIT_OK


async def run_serve(args: argparse.Namespace, settings: ArchiverSettings) -> int:
    if not os.path.isdir(args.root):
        raise ConfigError(f"Not a directory: {args.root}")
    print_info(f"Serving {os.path.abspath(args.root)} at http://{args.host}:{args.port}")
    # blocks until interrupted; the debug reloader needs the main thread
    run_app(args.root, args.host, args.port, args.debug, settings)
    return EXIT_OK


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the shop archiver.

    Returns:
        Exit code (0 success, 1 fatal error, 2 nothing fetched, 3 configuration error)
    """
    args = parse_arguments(argv)

    log_level = logging.DEBUG if args.verbose else (logging.WARNING if args.quiet else logging.INFO)
    setup_logger(level=log_level, log_file=args.log_file)

    try:
        settings = build_settings(args)

        if args.command == 'discover':
            return await run_discover(args, settings)
        if args.command == 'crawl':
            return await run_crawl(args, settings)
        if args.command == 'capture':
            return await run_capture(args, settings)
        if args.command == 'bake':
            if not os.path.isdir(args.root):
                raise ConfigError(f"Not a directory: {args.root}")
            scanned, updated = bake_run(args.root)
            print_success(f"Baked {updated} of {scanned} pages")
            return EXIT_OK
        return await run_serve(args, settings)

    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print_error("Interrupted by user")
        return EXIT_FATAL
    except Exception as e:
        print_error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return EXIT_FATAL


def run() -> None:
    """Entry point wrapper for running as module."""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
