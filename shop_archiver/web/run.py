#!/usr/bin/env python3
"""
Entry point for serving a captured run.

Usage:
    python -m shop_archiver.web.run ./archive --host 0.0.0.0 --port 8080
"""

import argparse
import os
import sys

from ..utils.config import ArchiverSettings, ConfigError
from ..utils.log import print_error, print_info, setup_logger
from .app import run_app


def main():
    """Parse arguments and run the archive server."""
    parser = argparse.ArgumentParser(
        description='Serve a captured shop archive offline'
    )
    parser.add_argument(
        'root',
        nargs='?',
        default=os.environ.get('ARCHIVE_ROOT'),
        help='Run root directory (default: $ARCHIVE_ROOT)'
    )
    parser.add_argument(
        '--host',
        default='127.0.0.1',
        help='Host to bind to (default: 127.0.0.1)'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        default=int(os.environ.get('PORT', 8080)),
        help='Port to listen on (default: $PORT or 8080)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug mode'
    )

    args = parser.parse_args()
    setup_logger()

    if not args.root:
        print_error("Run root directory is required (argument or ARCHIVE_ROOT)")
        sys.exit(3)
    if not os.path.isdir(args.root):
        print_error(f"Not a directory: {args.root}")
        sys.exit(3)

    try:
        settings = ArchiverSettings.from_env()
    except ConfigError as e:
        print_error(str(e))
        sys.exit(3)

    print_info(f"Serving {os.path.abspath(args.root)} at http://{args.host}:{args.port}")
    run_app(args.root, host=args.host, port=args.port, debug=args.debug, settings=settings)


if __name__ == '__main__':
    main()
