#!/usr/bin/env python3
"""Verify that manifest.json matches the content tree it describes.

Checks:
  1. manifest.json validates against schemas/manifest_v0.1.json
  2. every file listed under `checksums` exists and has the recorded digest
  3. every content file on disk is listed (manifest excluded)
  4. `content_sha256` (when present) matches the recomputed aggregate digest
  5. every `blocks` entry refers to a block file that exists

Nothing is written. Run after generate_checksums to catch hand edits or content
changed without regenerating the manifest.

Usage:
  python -m kbtools.verify_manifest [--content-root DIR] [--manifest NAME] [--json]

Exit codes: 0 consistent, 1 drift or schema failure, 2 manifest missing/unreadable.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import jsonschema

from kbtools.config import ContentConfig, load_config
from kbtools.console import RULE, emit_json, error, info
from kbtools.generate_checksums import aggregate_digest, block_id_for, categorize_files, scan_content
from kbtools.manifest_io import ManifestError, load_manifest, strip_prefix

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
MANIFEST_SCHEMA_FILE = "manifest_v0.1.json"


class Report:
    def __init__(self):
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.missing: list[str] = []
        self.unlisted: list[str] = []
        self.changed: list[str] = []

    def error(self, msg: str):
        self.errors.append(msg)

    def warn(self, msg: str):
        self.warnings.append(msg)

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> dict:
        return {
            "valid": self.ok,
            "errors": self.errors,
            "warnings": self.warnings,
            "missing": self.missing,
            "unlisted": self.unlisted,
            "changed": self.changed,
        }

    def summary(self) -> str:
        lines = []
        if self.errors:
            lines.append(f"ERRORS ({len(self.errors)}):")
            for e in self.errors:
                lines.append(f"  ✗ {e}")
        if self.warnings:
            lines.append(f"WARNINGS ({len(self.warnings)}):")
            for w in self.warnings:
                lines.append(f"  ⚠ {w}")
        if not self.errors:
            lines.append("✓ Manifest matches content")
        return "\n".join(lines)


def load_manifest_schema() -> dict:
    with open(SCHEMAS_DIR / MANIFEST_SCHEMA_FILE, encoding="utf-8") as f:
        return json.load(f)


def verify(config: ContentConfig, manifest: dict) -> Report:
    report = Report()

    try:
        jsonschema.validate(manifest, load_manifest_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "(root)"
        report.error(f"Schema FAIL at {where}: {e.message}")

    recorded = manifest.get("checksums")
    if not isinstance(recorded, dict):
        report.error("'checksums' must be an object mapping relpath -> sha256:<hex>")
        return report

    scan = scan_content(config.content_root, config.checksum_excludes(), config.exclude_dirs)
    actual = {f.path: f.sha256 for f in scan.files}

    for rel in sorted(recorded):
        if rel not in actual:
            report.missing.append(rel)
            report.error(f"listed but missing on disk: {rel}")
        elif not isinstance(recorded[rel], str):
            report.changed.append(rel)
            report.error(f"checksum for {rel} is not a string: {recorded[rel]!r}")
        elif strip_prefix(recorded[rel]) != actual[rel]:
            report.changed.append(rel)
            report.error(f"checksum mismatch: {rel}")
    for rel in actual:
        if rel not in recorded:
            report.unlisted.append(rel)
            report.error(f"not listed in manifest: {rel}")

    claimed = manifest.get("content_sha256")
    if claimed is None:
        report.warn("content_sha256 not recorded; aggregate digest not checked")
    elif not isinstance(claimed, str):
        report.error(f"content_sha256 is not a string: {claimed!r}")
    else:
        agg = aggregate_digest(config.content_root, [f.path for f in scan.files])
        if strip_prefix(claimed) != agg:
            report.error(f"content_sha256 mismatch: manifest {claimed} vs actual sha256:{agg}")

    blocks = manifest.get("blocks") or {}
    if isinstance(blocks, dict):
        present = {block_id_for(f.path) for f in categorize_files(scan.files)["blocks"]}
        for bid in sorted(blocks):
            if bid not in present:
                report.error(f"blocks entry without a block file: {bid}")
        for bid in sorted(present - set(blocks)):
            report.warn(f"block file without a blocks entry: {bid}")

    return report


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Verify manifest.json against the content tree.")
    ap.add_argument("--content-root", help="Content root directory (default: $KB_CONTENT_ROOT or ./knowledge)")
    ap.add_argument("--manifest", help="Manifest file name inside the content root (default: manifest.json)")
    ap.add_argument("--json", action="store_true", help="Print machine-readable output")
    args = ap.parse_args(argv)

    config = load_config(args.content_root, args.manifest)
    try:
        manifest = load_manifest(config.manifest_path)
    except (OSError, ManifestError) as e:
        error(str(e))
        return 2
    if manifest is None:
        error(f"Manifest not found: {config.manifest_path}")
        return 2

    try:
        report = verify(config, manifest)
    except OSError as e:
        error(f"Could not read content: {e}")
        return 2

    if args.json:
        emit_json(report.to_dict())
    else:
        info(f"Verifying {config.manifest_path} (version {manifest.get('version', '?')})")
        info(RULE)
        info(report.summary())
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
