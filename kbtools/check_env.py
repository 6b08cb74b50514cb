#!/usr/bin/env python3
"""Environment sanity-check for the content tools.

Checks:
- Python version (>= 3.11)
- Required dependencies importable, with installed versions
- Content root present (run from the repo root, or pass --content-root)
"""

from __future__ import annotations

import argparse
import importlib
import platform
import sys
from importlib import metadata

from kbtools.config import load_config

MIN_PY = (3, 11)

REQUIRED = [
    ("yaml", "PyYAML"),
    ("jsonschema", "jsonschema"),
]


def get_installed_version(dist_name: str) -> str | None:
    try:
        return metadata.version(dist_name)
    except metadata.PackageNotFoundError:
        return None


def check_python_version() -> list[str]:
    issues: list[str] = []
    if sys.version_info < MIN_PY:
        issues.append(
            f"Python >= {MIN_PY[0]}.{MIN_PY[1]} required; found "
            f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}."
        )
    return issues


def check_import(module: str, pip_name: str) -> tuple[bool, str | None]:
    try:
        importlib.import_module(module)
        return True, None
    except ImportError as e:
        return False, f"Missing module '{module}'. Install '{pip_name}' (pip install -e .). ({e})"


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--content-root", default=None, help="Content root to check for")
    args = ap.parse_args(argv)

    config = load_config(args.content_root)

    print("Knowledge tools environment check")
    print("-" * 72)
    print(f"Python: {sys.executable}")
    print(f"Python version: {sys.version.splitlines()[0]}")
    print(f"OS: {platform.system()} {platform.release()}")
    print(f"Content root: {config.content_root}")

    issues: list[str] = check_python_version()
    warnings: list[str] = []

    print("\nDependencies:")
    for mod, pip_name in REQUIRED:
        ok, msg = check_import(mod, pip_name)
        if not ok and msg:
            issues.append(msg)
            print(f"  - {pip_name}: NOT INSTALLED")
        else:
            print(f"  - {pip_name}: {get_installed_version(pip_name) or 'unknown version'}")

    if not config.content_root.is_dir():
        warnings.append(f"Content root not found: {config.content_root}")

    print("\nResult:")
    if issues:
        print("ENV CHECK: FAIL")
        for i in issues:
            print(f"- {i}")
        print("\nFix:")
        print("  python -m venv .venv")
        if platform.system().lower().startswith("win"):
            print("  .\\.venv\\Scripts\\Activate.ps1")
        else:
            print("  source .venv/bin/activate")
        print("  python -m pip install -e '.[test]'")
        return 2
    if warnings:
        print("ENV CHECK: PASS (WARNINGS)")
        for w in warnings:
            print(f"- {w}")
    else:
        print("ENV CHECK: PASS")
    print("Next:")
    print("  python -m kbtools.run_checks")
    return 0


if __name__ == "__main__":
    sys.exit(main())
