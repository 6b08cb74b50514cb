#!/usr/bin/env python3
"""Generate SHA-256 checksums for the knowledge content and merge them into manifest.json.

Design:
- Walks the content root in deterministic order (names sorted at every level).
- Per-file digest: sha256 of the raw bytes, recorded as "sha256:<hex>" under
  `checksums` keyed by forward-slash relpath.
- Aggregate digest `content_sha256`: one sha256 context fed, per file in walk
  order, the UTF-8 relpath followed by the file bytes. Any rename or content
  change alters it.
- The manifest itself is always excluded from the checksum set.
- Merge policy: `checksums`, `content_sha256`, `size`, `statistics` and
  `blocks` are regenerated; every other field (notably `version` and
  `released`) is preserved unless --version is given.
- Per-block versions: a block whose digest changed gets its patch number
  bumped and `updated` refreshed; unchanged blocks are left alone; new blocks
  start at 1.0.0; blocks that no longer exist are dropped.

Usage:
  python -m kbtools.generate_checksums [FILE] [--content-root DIR] [--manifest NAME]
                                        [--version V] [--dry-run] [--json]
"""

from __future__ import annotations

import argparse
import hashlib
import os
import re
import sys
from dataclasses import dataclass, field

from kbtools.bump_version import parse_release_tag
from kbtools.config import (
    BLOCKS_DIR,
    CATEGORIES_DIR,
    QUESTIONNAIRES_DIR,
    RESOURCES_DIR,
    ContentConfig,
    load_config,
)
from kbtools.console import emit_json, error, info, warn
from kbtools.content_walk import walk_content
from kbtools.manifest_io import (
    ManifestError,
    load_manifest,
    strip_prefix,
    utc_now,
    with_prefix,
    write_manifest,
)

FIRST_BLOCK_VERSION = "1.0.0"
SEED_VERSION = "0.0.0"
BLOCK_EXTS = (".yaml", ".yml")
SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


@dataclass
class FileEntry:
    path: str
    sha256: str
    size: int


@dataclass
class ScanResult:
    files: list[FileEntry] = field(default_factory=list)

    @property
    def checksums(self) -> dict[str, str]:
        return {f.path: with_prefix(f.sha256) for f in self.files}

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def file_count(self) -> int:
        return len(self.files)


def sha256_file(path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


def format_size(n: int) -> str:
    if n < 1024:
        return f"{n}B"
    if n < 1024 * 1024:
        return f"{round(n / 1024)}KB"
    return f"{round(n / (1024 * 1024))}MB"


def scan_content(root, exclude_files=(), exclude_dirs=()) -> ScanResult:
    """Digest every file under root. OSError aborts the scan."""
    entries = walk_content(
        root,
        lambda rel, fp: FileEntry(rel, sha256_file(fp), os.path.getsize(fp)),
        exclude_files,
        exclude_dirs,
    )
    return ScanResult([e.result for e in entries])


def aggregate_digest(root, relpaths) -> str:
    h = hashlib.sha256()
    for rel in relpaths:
        h.update(rel.encode("utf-8"))
        with open(os.path.join(root, *rel.split("/")), "rb") as f:
            for chunk in iter(lambda: f.read(1 << 20), b""):
                h.update(chunk)
    return h.hexdigest()


def categorize_files(files: list[FileEntry]) -> dict[str, list[FileEntry]]:
    cats: dict[str, list[FileEntry]] = {
        "blocks": [], "questionnaires": [], "categories": [], "resources": [], "other": [],
    }
    for f in files:
        top = f.path.split("/", 1)[0] if "/" in f.path else ""
        if top == BLOCKS_DIR and f.path.lower().endswith(BLOCK_EXTS):
            cats["blocks"].append(f)
        elif top == QUESTIONNAIRES_DIR:
            cats["questionnaires"].append(f)
        elif top == CATEGORIES_DIR:
            cats["categories"].append(f)
        elif top == RESOURCES_DIR:
            cats["resources"].append(f)
        else:
            cats["other"].append(f)
    return cats


def block_id_for(relpath: str) -> str:
    return os.path.splitext(os.path.basename(relpath))[0]


def bump_patch(version: str) -> str:
    m = SEMVER_RE.match(str(version))
    if not m:
        raise ManifestError(f"invalid block version '{version}' (expected MAJOR.MINOR.PATCH)")
    major, minor, patch = (int(x) for x in m.groups())
    return f"{major}.{minor}.{patch + 1}"


def update_block_versions(previous: dict, block_files: list[FileEntry], now: str) -> dict:
    """Return the new `blocks` mapping given the previous one and current block files."""
    out: dict[str, dict] = {}
    for entry in block_files:
        bid = block_id_for(entry.path)
        if bid in out:
            raise ManifestError(f"duplicate block id '{bid}' ({entry.path})")
        prev = previous.get(bid)
        if not isinstance(prev, dict) or "version" not in prev:
            rec = {"version": FIRST_BLOCK_VERSION, "updated": now}
        else:
            rec = dict(prev)
            recorded = prev.get("checksum")
            if recorded is not None and not isinstance(recorded, str):
                # unreadable digest counts as changed
                recorded = ""
            recorded = strip_prefix(recorded)
            # A record without a checksum has nothing to compare against.
            if recorded is not None and recorded != entry.sha256:
                rec["version"] = bump_patch(prev["version"])
                rec["updated"] = now
            rec.setdefault("updated", now)
        rec["checksum"] = with_prefix(entry.sha256)
        rec["size"] = format_size(entry.size)
        out[bid] = rec
    return out


def build_manifest(existing: dict | None, scan: ScanResult, root, now: str, version: str | None = None) -> dict:
    """Merge a scan into the existing manifest (never mutates `existing`)."""
    man = dict(existing) if existing else {}
    man.setdefault("version", SEED_VERSION)
    man.setdefault("released", now)
    if version:
        man["version"] = version
        man["released"] = now

    cats = categorize_files(scan.files)
    man["size"] = format_size(scan.total_size)
    man["checksums"] = scan.checksums
    man["content_sha256"] = with_prefix(aggregate_digest(root, [f.path for f in scan.files]))
    man["statistics"] = {
        "totalFiles": scan.file_count,
        "totalSize": format_size(scan.total_size),
        "totalBytes": scan.total_size,
        "blocks": len(cats["blocks"]),
        "questionnaires": len(cats["questionnaires"]),
        "categories": len(cats["categories"]),
        "resources": len(cats["resources"]),
        "lastUpdated": now,
    }
    previous_blocks = (existing or {}).get("blocks") or {}
    if not isinstance(previous_blocks, dict):
        raise ManifestError("'blocks' in existing manifest must be an object")
    man["blocks"] = update_block_versions(previous_blocks, cats["blocks"], now)
    return man


def generate(config: ContentConfig, version: str | None = None, dry_run: bool = False,
             now: str | None = None) -> tuple[ScanResult, dict]:
    """Scan the content root and (unless dry_run) write the merged manifest."""
    now = now or utc_now()
    scan = scan_content(config.content_root, config.checksum_excludes(), config.exclude_dirs)
    existing = load_manifest(config.manifest_path)
    manifest = build_manifest(existing, scan, config.content_root, now, version)
    if not dry_run and scan.file_count:
        write_manifest(config.manifest_path, manifest)
    return scan, manifest


# ─── Reporting ──────────────────────────────────────────────────────────────

def print_report(scan: ScanResult, manifest: dict | None):
    info("📊 Knowledge Checksum Report")
    info("=" * 34)
    info(f"📁 Total files: {scan.file_count}")
    info(f"💾 Total size: {format_size(scan.total_size)}")
    if manifest:
        info(f"🔗 Content digest: {manifest['content_sha256']}")
    info()

    cats = categorize_files(scan.files)
    sections = [
        ("blocks", "📚 Knowledge Blocks:"),
        ("questionnaires", "📝 Questionnaires:"),
        ("categories", "🗂  Categories:"),
        ("resources", "📄 Resources:"),
        ("other", "📎 Other Files:"),
    ]
    blocks = (manifest or {}).get("blocks", {})
    for key, title in sections:
        if not cats[key]:
            continue
        info(title)
        for f in cats[key]:
            info(f"  ✓ {f.path} ({format_size(f.size)})")
            if key == "blocks":
                rec = blocks.get(block_id_for(f.path))
                ver = f" v{rec['version']}" if rec else ""
                info(f"    └─ {f.sha256[:16]}...{ver}")
        info()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Generate content checksums and update manifest.json.")
    ap.add_argument("file", nargs="?", help="Report the digest of a single file (manifest untouched)")
    ap.add_argument("--content-root", help="Content root directory (default: $KB_CONTENT_ROOT or ./knowledge)")
    ap.add_argument("--manifest", help="Manifest file name inside the content root (default: manifest.json)")
    ap.add_argument("--version", help="Set manifest version (and released timestamp)")
    ap.add_argument("--dry-run", action="store_true", help="Report only; do not write the manifest")
    ap.add_argument("--json", action="store_true", help="Print machine-readable output")
    args = ap.parse_args(argv)

    if args.file:
        if not os.path.isfile(args.file):
            error(f"File not found: {args.file}")
            return 2
        try:
            digest = sha256_file(args.file)
        except OSError as e:
            error(str(e))
            return 1
        size = os.path.getsize(args.file)
        if args.json:
            emit_json({"path": args.file, "checksum": with_prefix(digest), "size": size})
        else:
            info(f"{with_prefix(digest)}  {args.file} ({format_size(size)})")
        return 0

    version = None
    if args.version:
        if not parse_release_tag(args.version):
            error(f"Invalid version '{args.version}' (expected YYYY.MM.DD.PATCH)")
            return 2
        version = args.version.strip().lstrip("v")

    config = load_config(args.content_root, args.manifest)
    if not config.content_root.is_dir():
        error(f"Content root not found: {config.content_root}")
        return 2

    if not args.json:
        info("🔐 Generating checksums for knowledge content...\n")
    try:
        scan, manifest = generate(config, version=version, dry_run=args.dry_run)
    except (OSError, ManifestError) as e:
        error(str(e))
        return 1

    if scan.file_count == 0:
        warn("No files found to checksum")
        return 0

    if args.json:
        emit_json({
            "dry_run": args.dry_run,
            "version": manifest["version"],
            "size": manifest["size"],
            "content_sha256": manifest["content_sha256"],
            "checksums": manifest["checksums"],
            "blocks": manifest["blocks"],
        })
        return 0

    if args.dry_run:
        info("🔍 Dry run mode - no changes made\n")
    print_report(scan, manifest)
    if not args.dry_run:
        info(f"✅ Checksums generated and saved to {config.manifest_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
