#!/usr/bin/env python3
"""
RBI Registry: launch the API server.

Usage:
    python main.py                          # http://127.0.0.1:8000/docs
    python main.py --port 9000 --host 0.0.0.0
    python main.py --db /path/to/rbi.sqlite
    python main.py --env production         # strict secret checks
    python main.py --check                  # validate settings and exit
    python main.py --reload                 # auto-reload on code changes
"""

from __future__ import annotations

import argparse
import os
import sys
import threading
import webbrowser
from pathlib import Path

import uvicorn

from utils.config import ENVIRONMENTS, AppConfig, validate_environment

# CLI flag -> environment variable read by utils.config when api.app loads
_EXPORTED = {"db": "APP_DB_PATH", "env": "APP_ENV", "log_format": "APP_LOG_FORMAT"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Launch the RBI registry API.")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "127.0.0.1"),
                        help="Bind address (default: 127.0.0.1 or APP_HOST)")
    parser.add_argument("--port", type=int, default=int(os.getenv("APP_PORT", "8000")),
                        help="Port (default: 8000 or APP_PORT)")
    parser.add_argument("--db", type=Path, default=None,
                        help="SQLite database (default: rbi.sqlite or APP_DB_PATH)")
    parser.add_argument("--env", choices=ENVIRONMENTS, default=None,
                        help="Deployment environment, exported as APP_ENV")
    parser.add_argument("--log-format", choices=("text", "json"), default=None,
                        help="Request log format, exported as APP_LOG_FORMAT")
    parser.add_argument("--check", action="store_true",
                        help="Validate the environment settings and exit")
    parser.add_argument("--reload", action="store_true",
                        help="Restart on code changes (development)")
    parser.add_argument("--no-browser", action="store_true",
                        help="Don't open the API docs in a browser")
    return parser


def _export(args: argparse.Namespace) -> None:
    for attr, var in _EXPORTED.items():
        value = getattr(args, attr)
        if value is not None:
            os.environ[var] = str(value)


def _check() -> int:
    cfg = AppConfig()
    for key, value in sorted(cfg.to_dict().items()):
        print(f"  {key}: {value}")
    result = validate_environment(cfg)
    for warning in result.warnings:
        print(f"warning: {warning}")
    for error in result.errors:
        print(f"error: {error}", file=sys.stderr)
    print("Configuration OK" if result.is_valid() else "Configuration has errors")
    return 0 if result.is_valid() else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _export(args)
    if args.check:
        return _check()

    db_path = Path(os.getenv("APP_DB_PATH", "rbi.sqlite"))
    if not db_path.exists():
        print(f"Warning: Database not found at {db_path}\n"
              "  Build it with 'python build_rbi_db.py' or pass --db PATH\n",
              file=sys.stderr)

    host = "localhost" if args.host == "0.0.0.0" else args.host
    url = f"http://{host}:{args.port}"
    print(f"Starting RBI Registry API at {url}")
    print(f"Database: {db_path}  Environment: {os.getenv('APP_ENV', 'development')}\n")

    if not args.no_browser:
        # The docs page needs the server bound first
        threading.Timer(1.5, webbrowser.open, args=(f"{url}/docs",)).start()

    uvicorn.run("api.app:app", host=args.host, port=args.port,
                reload=args.reload, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
