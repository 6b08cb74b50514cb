#!/usr/bin/env python3
"""Run every content check in one go (meant for CI on pull requests).

1. Content validation over the whole content root.
2. Manifest verification, when a manifest exists. Pull requests usually change
   content without regenerating the manifest, so drift is reported but only
   fails the run with --require-manifest.

Usage:
  python -m kbtools.run_checks [--content-root DIR] [--strict] [--require-manifest]
"""

from __future__ import annotations

import argparse
import sys

from kbtools.config import load_config
from kbtools.console import RULE, error, info
from kbtools.manifest_io import ManifestError, load_manifest
from kbtools.validate_content import print_results, validate_tree
from kbtools.verify_manifest import verify


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Run all knowledge content checks.")
    ap.add_argument("--content-root", help="Content root directory (default: $KB_CONTENT_ROOT or ./knowledge)")
    ap.add_argument("--strict", action="store_true", help="Treat validation warnings as failures")
    ap.add_argument("--require-manifest", action="store_true",
                    help="Fail when manifest.json is missing or does not match the content")
    args = ap.parse_args(argv)

    config = load_config(args.content_root)
    if not config.content_root.is_dir():
        error(f"Content root not found: {config.content_root}")
        return 2

    ok = True

    info(f"\n=== VALIDATE: {config.content_root} ===\n")
    try:
        results = validate_tree(config)
    except OSError as e:
        error(f"Could not read content: {e}")
        return 2
    print_results(results, strict=args.strict)
    if any(not r.valid or (args.strict and r.warnings) for r in results):
        ok = False

    info(f"\n=== MANIFEST: {config.manifest_path} ===\n")
    try:
        manifest = load_manifest(config.manifest_path)
    except ManifestError as e:
        error(str(e))
        return 2
    if manifest is None:
        info("SKIP (no manifest)")
        if args.require_manifest:
            ok = False
    else:
        try:
            report = verify(config, manifest)
        except OSError as e:
            error(f"Could not read content: {e}")
            return 2
        info(report.summary())
        if not report.ok and args.require_manifest:
            ok = False

    info("\n" + RULE)
    info("ALL CHECKS PASSED" if ok else "CHECKS FAILED")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
