#!/usr/bin/env python3
"""Compute the next date-based release version: YYYY.MM.DD.PATCH.

PATCH is one more than the highest patch already tagged for today's date, or 0
when no release exists for today. Dates are always taken in UTC.

Release tags are read from `git tag -l` (or a --tags-file, one tag per line).
Tags may carry a leading "v"; anything not shaped like a release tag is ignored.

Usage:
  python -m kbtools.bump_version [VERSION] [--update-manifest] [--dry-run]
                                  [--content-root DIR] [--repo-dir DIR]
                                  [--tags-file FILE] [--date YYYY-MM-DD] [--json]
"""

from __future__ import annotations

import argparse
import re
import subprocess
import sys
from datetime import date, datetime, timezone

from kbtools.config import load_config
from kbtools.console import emit_json, error, info, warn
from kbtools.manifest_io import ManifestError, load_manifest, utc_now, write_manifest

TAG_RE = re.compile(r"^v?(\d{4})\.(\d{2})\.(\d{2})\.(\d+)$")


def parse_release_tag(tag: str) -> tuple[date, int] | None:
    """'v2024.12.15.1' -> (date(2024, 12, 15), 1); None for non-release tags."""
    m = TAG_RE.match(tag.strip())
    if not m:
        return None
    y, mo, d, patch = (int(x) for x in m.groups())
    try:
        return date(y, mo, d), patch
    except ValueError:
        return None


def format_version(day: date, patch: int) -> str:
    return f"{day:%Y.%m.%d}.{patch}"


def next_version(existing_tags, today: date) -> str:
    """Smallest patch above every existing release for `today`."""
    patches = []
    for tag in existing_tags:
        parsed = parse_release_tag(tag)
        if parsed and parsed[0] == today:
            patches.append(parsed[1])
    return format_version(today, max(patches) + 1 if patches else 0)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def git(*args, cwd=None) -> str:
    """Run a git command and return stdout."""
    result = subprocess.run(
        ["git"] + list(args),
        capture_output=True, text=True, encoding="utf-8",
        cwd=cwd, timeout=30,
    )
    if result.returncode != 0:
        raise RuntimeError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout.strip()


def list_git_tags(repo_dir=None) -> list[str]:
    try:
        out = git("tag", "-l", cwd=repo_dir)
    except (OSError, RuntimeError, subprocess.TimeoutExpired) as e:
        warn(f"Could not fetch git tags: {e}")
        return []
    return out.splitlines() if out else []


def read_tags_file(path) -> list[str]:
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def update_manifest_version(manifest_path, version: str, released: str | None = None) -> str | None:
    """Set `version` and `released`, leaving all other fields as they are. Returns the old version."""
    manifest = load_manifest(manifest_path)
    if manifest is None:
        raise FileNotFoundError(f"manifest not found: {manifest_path}")
    old = manifest.get("version")
    manifest["version"] = version
    manifest["released"] = released or utc_now()
    write_manifest(manifest_path, manifest)
    return old


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Compute the next YYYY.MM.DD.PATCH release version.")
    ap.add_argument("version", nargs="?", help="Use this version instead of computing one")
    ap.add_argument("--content-root", help="Content root holding manifest.json")
    ap.add_argument("--repo-dir", help="Git repository to read tags from (default: cwd)")
    ap.add_argument("--tags-file", help="Read release tags from a file instead of git")
    ap.add_argument("--date", help="Override today's date (YYYY-MM-DD, UTC)")
    ap.add_argument("--update-manifest", action="store_true", help="Write version/released into manifest.json")
    ap.add_argument("--dry-run", action="store_true", help="Print the version only; change nothing")
    ap.add_argument("--json", action="store_true", help="Print machine-readable output")
    args = ap.parse_args(argv)

    if args.version:
        if not parse_release_tag(args.version):
            error(f"Invalid version '{args.version}' (expected YYYY.MM.DD.PATCH)")
            return 2
        version = args.version.lstrip("v")
    else:
        try:
            today = date.fromisoformat(args.date) if args.date else today_utc()
        except ValueError:
            error(f"Invalid --date '{args.date}' (expected YYYY-MM-DD)")
            return 2
        try:
            tags = read_tags_file(args.tags_file) if args.tags_file else list_git_tags(args.repo_dir)
        except OSError as e:
            error(f"Could not read tags file: {e}")
            return 2
        version = next_version(tags, today)

    config = load_config(args.content_root)
    old_version = None
    updated = False
    if args.update_manifest and not args.dry_run:
        try:
            old_version = update_manifest_version(config.manifest_path, version)
        except (OSError, ManifestError) as e:
            error(str(e))
            return 1
        updated = True

    if args.json:
        emit_json({
            "version": version,
            "tag": f"v{version}",
            "previous": old_version,
            "manifest_updated": updated,
            "dry_run": args.dry_run,
        })
        return 0

    info("📦 Knowledge Version Bump")
    info("=" * 30)
    info(f"New version: {version}")
    if args.dry_run:
        info("🔍 Dry run - no changes made")
        return 0
    if updated:
        info(f"✅ Version bumped from {old_version} to {version}")
    else:
        info("ℹ️  Use --update-manifest to update manifest.json")

    info("\n📋 Next steps:")
    info("1. Review changes")
    info(f'2. Commit: git add -A && git commit -m "chore: bump version to {version}"')
    info(f"3. Tag: git tag v{version}")
    info("4. Push: git push origin main --tags")
    return 0


if __name__ == "__main__":
    sys.exit(main())
