"""
CLI for launching the memfabric FastAPI server.

Usage:
    python scripts/memfabric_serve.py
    python scripts/memfabric_serve.py --port 8080 --host 127.0.0.1 --config config.json
"""

import argparse
import os
import sys

import uvicorn


def main():
    parser = argparse.ArgumentParser(
        description="Launch memfabric FastAPI server"
    )

    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON settings file (exported as MEMFABRIC_CONFIG)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )

    args = parser.parse_args()

    if args.config:
        if not os.path.exists(args.config):
            print(f"Config file not found: {args.config}", file=sys.stderr)
            return 1
        os.environ["MEMFABRIC_CONFIG"] = os.path.abspath(args.config)

    print(f"Starting memfabric API server on {args.host}:{args.port}")
    print(f"API documentation available at: http://localhost:{args.port}/docs")

    uvicorn.run(
        "memfabric.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
