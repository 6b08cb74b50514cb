"""Content root configuration shared by the tools.

Nothing here reads the filesystem at import time: every tool resolves its
content root from the CLI (or the KB_CONTENT_ROOT environment variable) and
passes a ContentConfig down to the library functions.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

ENV_CONTENT_ROOT = "KB_CONTENT_ROOT"
DEFAULT_CONTENT_DIR = "knowledge"
MANIFEST_NAME = "manifest.json"

BLOCKS_DIR = "blocks"
QUESTIONNAIRES_DIR = "questionnaires"
CATEGORIES_DIR = "categories"
RESOURCES_DIR = "resources"

# Noise directories pruned from every walk.
EXCLUDE_DIRS = frozenset({
    "__pycache__", ".pytest_cache", ".mypy_cache", ".git", "node_modules",
})
# Files never checksummed or validated (OS litter).
EXCLUDE_FILES = frozenset({".DS_Store", "Thumbs.db"})


@dataclass
class ContentConfig:
    content_root: Path
    manifest_name: str = MANIFEST_NAME
    exclude_files: frozenset[str] = EXCLUDE_FILES
    exclude_dirs: frozenset[str] = EXCLUDE_DIRS
    category_dirs: dict[str, str] = field(default_factory=lambda: {
        "knowledge_block": BLOCKS_DIR,
        "questionnaire": QUESTIONNAIRES_DIR,
        "category_index": CATEGORIES_DIR,
    })

    @property
    def manifest_path(self) -> Path:
        return self.content_root / self.manifest_name

    @property
    def resources_dir(self) -> Path:
        return self.content_root / RESOURCES_DIR

    def checksum_excludes(self) -> frozenset[str]:
        """File names left out of the checksum set (the manifest is never hashed)."""
        return self.exclude_files | {self.manifest_name}


def resolve_content_root(arg: str | None = None) -> Path:
    """CLI argument first, then $KB_CONTENT_ROOT, then ./knowledge."""
    if arg:
        return Path(arg).resolve()
    env = os.environ.get(ENV_CONTENT_ROOT)
    if env:
        return Path(env).resolve()
    return (Path.cwd() / DEFAULT_CONTENT_DIR).resolve()


def load_config(content_root: str | None = None, manifest_name: str | None = None) -> ContentConfig:
    root = resolve_content_root(content_root)
    if manifest_name:
        return ContentConfig(content_root=root, manifest_name=manifest_name)
    return ContentConfig(content_root=root)
