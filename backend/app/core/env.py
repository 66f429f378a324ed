"""Environment loading and typed env lookups.

Configuration is via environment variables only. A `.env` file is a convenience
for local runs; it never overrides variables already present in the process.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    if line.startswith("export "):
        line = line[len("export "):]
    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def load_env_if_present(*, override: bool = False) -> None:
    """Load `.env` from the repo root, then `backend/.env`, into os.environ."""

    # backend/app/core/env.py -> parents[3] is the repo root
    repo_root = Path(__file__).resolve().parents[3]
    for path in (repo_root / ".env", repo_root / "backend" / ".env"):
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            continue
        for raw in content.splitlines():
            parsed = _parse_env_line(raw)
            if parsed is None:
                continue
            key, value = parsed
            if not override and key in os.environ:
                continue
            os.environ[key] = value


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = env_str(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name}={raw!r}; must be an integer.") from e
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum} (got {value}).")
    return value


def env_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = env_str(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name}={raw!r}; must be a number.") from e
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum} (got {value}).")
    return value


def env_bool(name: str, default: bool = False) -> bool:
    raw = env_str(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")
