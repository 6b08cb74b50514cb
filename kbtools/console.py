"""Shared print helpers for the content tools.

All tools report through plain prints: progress on stdout, problems on stderr
with an ERROR:/WARNING: prefix. Machine-readable output goes through emit_json.
"""

from __future__ import annotations

import json
import sys

RULE = "=" * 50


def info(msg: str = "") -> None:
    """Print info to stdout."""
    print(msg)


def warn(msg: str) -> None:
    """Print warning to stderr."""
    print(f"WARNING: {msg}", file=sys.stderr)


def error(msg: str) -> None:
    """Print error to stderr without exiting."""
    print(f"ERROR: {msg}", file=sys.stderr)


def abort(msg: str, code: int = 2) -> None:
    """Print error and exit."""
    error(msg)
    sys.exit(code)


def emit_json(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))
