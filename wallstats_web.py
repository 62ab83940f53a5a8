#!/usr/bin/env python3
"""
Wallstats Web API

Starts the FastAPI stats cache API.

Usage:
    python wallstats_web.py              # Start on port 5000
    python wallstats_web.py --port 8080  # Custom port
    python wallstats_web.py --host 0.0.0.0  # Listen on all interfaces
    python wallstats_web.py --reload     # Enable auto-reload for development
"""

import argparse
import sys
from pathlib import Path

# Ensure project root is in path
PROJECT_ROOT = Path(__file__).parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from web.config import DEFAULT_HOST, DEFAULT_PORT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Wallstats Web API',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python wallstats_web.py                    # Start on localhost:5000
    python wallstats_web.py --port 8080        # Use custom port
    python wallstats_web.py --host 0.0.0.0     # Listen on all interfaces
    python wallstats_web.py --reload           # Auto-reload on code changes
        """
    )
    parser.add_argument(
        '--host',
        default=DEFAULT_HOST,
        help=f'Host to bind to (default: {DEFAULT_HOST})'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=DEFAULT_PORT,
        help=f'Port to listen on (default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--reload',
        action='store_true',
        help='Enable auto-reload for development'
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    import uvicorn

    print("=" * 60)
    print("  Wallstats Web API")
    print("=" * 60)
    print(f"  URL: http://{args.host}:{args.port}")
    print(f"  Reload: {'Enabled' if args.reload else 'Disabled'}")
    print("=" * 60)
    print("")
    print("Press Ctrl+C to stop the server")
    print("")

    uvicorn.run(
        "web.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )


if __name__ == "__main__":
    main()
