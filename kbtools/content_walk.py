"""Deterministic content-tree traversal used by the validator and the checksum tool.

Ordering contract:
- At every directory level, entries are sorted by name before recursing, so two
  runs over the same tree always yield the same relpath sequence.
- Relpaths use forward slashes on all platforms.
- Excluded file names are matched on the base name; excluded dirs are pruned.
- Symlinked dirs are followed unless they resolve to a dir already being walked.

A visitor receives (relpath, abspath). It returns a result or raises VisitError
to record a per-file failure; any other exception (including OSError from the
walk itself) propagates and aborts the caller.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator


class VisitError(Exception):
    """Per-file failure raised by a visitor; recorded, not propagated."""


@dataclass
class WalkEntry:
    relpath: str
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def norm_relpath(rel: str) -> str:
    r = rel.replace("\\", "/")
    while r.startswith("./"):
        r = r[2:]
    return r


def _walk(base: str, prefix: str, exclude_files, exclude_dirs,
          ancestors: frozenset[str] = frozenset()) -> Iterator[str]:
    # symlink loop: dir already on the current path
    real = os.path.realpath(base)
    if real in ancestors:
        return
    ancestors = ancestors | {real}
    # os.scandir raises on permission problems; let it.
    with os.scandir(base) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        rel = f"{prefix}{entry.name}"
        if entry.is_dir():
            if entry.name in exclude_dirs:
                continue
            yield from _walk(entry.path, rel + "/", exclude_files, exclude_dirs, ancestors)
        elif entry.is_file():
            if entry.name in exclude_files:
                continue
            yield rel


def iter_content_files(
    root,
    exclude_files: Iterable[str] = (),
    exclude_dirs: Iterable[str] = (),
) -> list[str]:
    """Return all file relpaths under root in deterministic order."""
    root = os.fspath(root)
    if not os.path.isdir(root):
        raise FileNotFoundError(f"Content root is not a directory: {root}")
    return list(_walk(root, "", frozenset(exclude_files), frozenset(exclude_dirs)))


def walk_content(
    root,
    visitor: Callable[[str, str], Any],
    exclude_files: Iterable[str] = (),
    exclude_dirs: Iterable[str] = (),
    relpaths: Iterable[str] | None = None,
) -> list[WalkEntry]:
    """Apply visitor to every file under root, collecting per-file results.

    When relpaths is given the directory listing is skipped and only those
    files are visited, in the given order.
    """
    root = os.fspath(root)
    if relpaths is None:
        relpaths = iter_content_files(root, exclude_files, exclude_dirs)
    out: list[WalkEntry] = []
    for rel in relpaths:
        rel = norm_relpath(rel)
        fp = os.path.join(root, *rel.split("/"))
        try:
            out.append(WalkEntry(rel, visitor(rel, fp)))
        except VisitError as e:
            out.append(WalkEntry(rel, error=str(e)))
    return out
