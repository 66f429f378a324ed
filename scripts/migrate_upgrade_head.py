"""Bring the notice schema up to the latest Alembic revision.

Usage:
  python scripts/migrate_upgrade_head.py [--revision REV]

DATABASE_URL is taken from the environment or a `.env` file.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config


ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.config import DATABASE_URL_ENV  # noqa: E402
from app.core.env import load_env_if_present  # noqa: E402


def alembic_config(url: str) -> Config:
    cfg = Config(str(BACKEND_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)
    return cfg


def main() -> int:
    ap = argparse.ArgumentParser(description="Upgrade the notice schema.")
    ap.add_argument("--revision", default="head")
    args = ap.parse_args()

    load_env_if_present()
    url = os.environ.get(DATABASE_URL_ENV)
    if not url:
        print(f"{DATABASE_URL_ENV} is not set; export it or add it to .env.", file=sys.stderr)
        return 2

    command.upgrade(alembic_config(url), args.revision)
    print(f"notice schema upgraded to {args.revision}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
