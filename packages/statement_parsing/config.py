"""Environment-driven configuration.

All settings are read lazily from the process environment (the CLI loads a
local ``.env`` via ``python-dotenv`` first). Nothing here is read at import
time so tests can ``monkeypatch.setenv`` freely.

Variables
---------
- ``STATEMENT_PARSING_MODEL``: model name for Responses API calls
  (default ``gpt-5``).
- ``STATEMENT_PARSING_SANDBOX``: ``auto`` (default), ``isolated`` or
  ``restricted``.
- ``STATEMENT_PARSING_SANDBOX_PYTHON``: interpreter used by the isolated
  sandbox (default: the running interpreter).
- ``STATEMENT_PARSING_MAX_ITEMS``: cap on accepted records per execution
  (default 10000, clamped to 10000..50000).
"""

from __future__ import annotations

import os
import sys
from typing import Literal

type SandboxStrategy = Literal["auto", "isolated", "restricted"]

DEFAULT_MODEL: str = "gpt-5"
DEFAULT_MAX_ITEMS: int = 10_000
MAX_ITEMS_CEILING: int = 50_000

_STRATEGIES: frozenset[str] = frozenset({"auto", "isolated", "restricted"})


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_int(name: str) -> int | None:
    raw = _env_str(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def model_name() -> str:
    return _env_str("STATEMENT_PARSING_MODEL") or DEFAULT_MODEL


def sandbox_strategy() -> SandboxStrategy:
    """Return the configured sandbox strategy; unknown values mean ``auto``."""

    raw = (_env_str("STATEMENT_PARSING_SANDBOX") or "auto").lower()
    if raw not in _STRATEGIES:
        return "auto"
    return raw  # type: ignore[return-value]


def sandbox_python() -> str:
    return _env_str("STATEMENT_PARSING_SANDBOX_PYTHON") or sys.executable


def max_items() -> int:
    value = _env_int("STATEMENT_PARSING_MAX_ITEMS")
    if value is None:
        return DEFAULT_MAX_ITEMS
    return max(DEFAULT_MAX_ITEMS, min(value, MAX_ITEMS_CEILING))


__all__ = [
    "DEFAULT_MAX_ITEMS",
    "DEFAULT_MODEL",
    "MAX_ITEMS_CEILING",
    "SandboxStrategy",
    "max_items",
    "model_name",
    "sandbox_python",
    "sandbox_strategy",
]
