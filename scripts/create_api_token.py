"""Provision a bearer token for the read API.

Usage:
  python scripts/create_api_token.py --name ops-dashboard

Prints the new token once; only the token row is stored.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.config import Settings  # noqa: E402
from app.core.db import create_db_engine, create_session_factory  # noqa: E402
from app.repositories.token_repo import create_token  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--name", required=True, help="human-readable owner of the token")
    ap.add_argument("--token", default=None, help="use this value instead of a random one")
    args = ap.parse_args()

    settings = Settings.from_env()
    engine = create_db_engine(settings.database)
    try:
        with create_session_factory(engine)() as session, session.begin():
            row = create_token(session, args.name, token=args.token)
            token = row.token
    finally:
        engine.dispose()

    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
