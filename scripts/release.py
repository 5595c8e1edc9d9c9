"""
Release step for a deploy: bring the schema to Alembic head, then make sure the
first admin account exists.

Usage:
  python scripts/release.py [--skip-seed]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402

from app.loyalty.config import load_settings  # noqa: E402
from scripts.init_db import seed_only  # noqa: E402


def alembic_config(database_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def run_release(*, seed: bool = True) -> None:
    # load_settings() falls back to a local sqlite file; a release must name its database.
    if not (os.environ.get("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL must be set for a release.")
    settings = load_settings()
    if settings.env.lower() in ("prod", "production") and settings.database_url.startswith("sqlite"):
        raise RuntimeError("Refusing to migrate a sqlite database in production.")

    print(f"Migrating loyalty database to head (ENV={settings.env})", flush=True)
    command.upgrade(alembic_config(settings.database_url), "head")

    if seed:
        seed_only(database_url=settings.database_url)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Migrate the loyalty database and seed the admin account")
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    args = parser.parse_args(argv)
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
