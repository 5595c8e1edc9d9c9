#!/usr/bin/env python3
"""
Container entry point: run the release step, then hand the process over to
gunicorn serving app.wsgi:app.

Usage:
  python scripts/start.py [--port N] [--workers N] [--skip-release]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 5000
DEFAULT_WORKERS = 2


def _port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port {raw!r}")
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port {port} out of range 1-65535")
    return port


def gunicorn_argv(port: int, workers: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        # Excel imports run inside the request.
        "--timeout", "120",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Release and serve the loyalty registry")
    parser.add_argument("--port", type=_port, default=os.environ.get("PORT") or str(DEFAULT_PORT))
    parser.add_argument("--workers", type=int, default=int(os.environ.get("WEB_CONCURRENCY") or DEFAULT_WORKERS))
    parser.add_argument("--skip-release", action="store_true")
    args = parser.parse_args(argv)

    if not args.skip_release:
        from scripts.release import run_release

        run_release()

    print(f"Serving loyalty registry on port {args.port} with {args.workers} workers", flush=True)
    os.execvp("gunicorn", gunicorn_argv(args.port, args.workers))


if __name__ == "__main__":
    main()
