"""Read/write helpers for the release manifest (manifest.json).

The manifest is written atomically: the JSON is rendered to a temp file in the
same directory and moved over the old file with os.replace, so an interrupted
or failed run never leaves a partially written manifest behind.
"""

from __future__ import annotations

import json
import os
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path

SHA256_PREFIX = "sha256:"


class ManifestError(ValueError):
    """Malformed or inconsistent manifest content."""


def utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def with_prefix(hexdigest: str) -> str:
    return f"{SHA256_PREFIX}{hexdigest}"


def strip_prefix(digest: str | None) -> str | None:
    if digest is None:
        return None
    if digest.startswith(SHA256_PREFIX):
        return digest[len(SHA256_PREFIX):]
    return digest


def load_manifest(path) -> dict | None:
    """Return the parsed manifest, or None when the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(f"{path}: invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"{path}: manifest must be a JSON object")
    return data


def dump_manifest(manifest: dict) -> str:
    return json.dumps(manifest, ensure_ascii=False, indent=2) + "\n"


def _target_mode(path: Path) -> int:
    """Mode of the existing manifest, else what a plain open() would create."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_manifest(path, manifest: dict) -> None:
    path = Path(path)
    text = dump_manifest(manifest)
    mode = _target_mode(path)
    fd, tmp = tempfile.mkstemp(prefix=".manifest-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        # mkstemp creates 0600
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
