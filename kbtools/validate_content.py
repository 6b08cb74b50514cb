#!/usr/bin/env python3
"""Content Validator: syntax and structure checks for the knowledge corpus.

Validates knowledge blocks (blocks/*.yaml), questionnaires (questionnaires/*.json)
and category indexes (categories/*.yaml|json) under a content root.

Checks, per file:
  1. Parses as YAML/JSON (duplicate mapping keys are a parse error). A parse
     failure is reported once and stops further checks for that file, as does
     a recursive alias (a container that contains itself) anywhere in it.
  2. Every required top-level field is present (one violation per field).
  3. Declared `id` equals the file base name (extension stripped).
  4. Category structure:
     - knowledge block: recursive node walk (question/options/paths/resources/
       summary shapes, options vs paths, missing resources,
       repeated identical sub-trees)
     - questionnaire: each question validated against
       schemas/questionnaire_question_v0.1.json
     - category index: block id list, unknown block ids

Errors are violations; warnings are printed but do not fail the run unless
--strict is given. The tool never writes.

Usage:
  python -m kbtools.validate_content [FILE] [--content-root DIR] [--json] [--strict]

Exit codes: 0 no violations, 1 violations found, 2 fatal (missing input).
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

import jsonschema
import yaml

from kbtools.config import (
    BLOCKS_DIR,
    CATEGORIES_DIR,
    ENV_CONTENT_ROOT,
    QUESTIONNAIRES_DIR,
    ContentConfig,
    load_config,
)
from kbtools.console import RULE, emit_json, error, info
from kbtools.content_walk import iter_content_files, norm_relpath, walk_content

# ─── Constants ──────────────────────────────────────────────────────────────

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"
QUESTION_SCHEMA_FILE = "questionnaire_question_v0.1.json"

KNOWLEDGE_BLOCK = "knowledge_block"
QUESTIONNAIRE = "questionnaire"
CATEGORY_INDEX = "category_index"

YAML_EXTS = (".yaml", ".yml")
JSON_EXTS = (".json",)

CATEGORY_RULES = {
    BLOCKS_DIR: (KNOWLEDGE_BLOCK, YAML_EXTS),
    QUESTIONNAIRES_DIR: (QUESTIONNAIRE, JSON_EXTS),
    CATEGORIES_DIR: (CATEGORY_INDEX, YAML_EXTS + JSON_EXTS),
}

REQUIRED_FIELDS = {
    KNOWLEDGE_BLOCK: ("id", "title", "initial_question", "paths", "metadata"),
    QUESTIONNAIRE: ("id", "title", "questions", "llmConfig"),
    CATEGORY_INDEX: ("id", "title", "blocks"),
}

QUESTION_TYPES = ("text", "textarea", "radio", "checkbox")

# Violation kinds
PARSE = "parse"
MISSING_FIELD = "missing-field"
ID_MISMATCH = "id-mismatch"
STRUCTURE = "structure"


class ParseError(Exception):
    """Raised when a content file cannot be parsed into a document."""


# ─── Results ────────────────────────────────────────────────────────────────

@dataclass
class Violation:
    kind: str
    message: str

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


@dataclass
class FileResult:
    relpath: str
    category: str | None
    errors: list[Violation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, kind: str, msg: str):
        self.errors.append(Violation(kind, msg))

    def warn(self, msg: str):
        self.warnings.append(msg)

    @property
    def valid(self) -> bool:
        return len(self.errors) == 0

    def kinds(self) -> list[str]:
        return [v.kind for v in self.errors]

    def to_dict(self) -> dict:
        return {
            "path": self.relpath,
            "category": self.category,
            "valid": self.valid,
            "errors": [v.to_dict() for v in self.errors],
            "warnings": list(self.warnings),
        }


# ─── Parsing ────────────────────────────────────────────────────────────────

class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate keys inside any mapping."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            # Checked before merge keys are flattened; overriding a merged key is legal.
            for key_node, _ in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                try:
                    duplicate = key in seen
                except TypeError:
                    # unhashable key; the base constructor reports it
                    continue
                if duplicate:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping", node.start_mark,
                        f"found duplicate key {key!r}", key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _reject_duplicate_pairs(pairs):
    out = {}
    for k, v in pairs:
        if k in out:
            raise ValueError(f"duplicate key {k!r}")
        out[k] = v
    return out


def load_document(path) -> dict:
    """Parse a YAML or JSON content file; the top level must be a mapping."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"not valid UTF-8: {e}") from e

    if path.suffix.lower() in JSON_EXTS:
        try:
            doc = json.loads(text, object_pairs_hook=_reject_duplicate_pairs)
        except ValueError as e:
            raise ParseError(f"JSON parse error: {e}") from e
    else:
        try:
            doc = yaml.load(text, Loader=UniqueKeyLoader)
        except yaml.YAMLError as e:
            raise ParseError(f"YAML parse error: {e}") from e

    if not isinstance(doc, dict):
        kind = "empty document" if doc is None else type(doc).__name__
        raise ParseError(f"top-level document must be a mapping, got {kind}")
    return doc


def detect_category(relpath: str) -> str | None:
    parts = norm_relpath(relpath).split("/")
    if len(parts) < 2:
        return None
    rule = CATEGORY_RULES.get(parts[0])
    if rule is None:
        return None
    category, exts = rule
    if os.path.splitext(parts[-1])[1].lower() in exts:
        return category
    return None


def file_id(relpath: str) -> str:
    return os.path.splitext(os.path.basename(relpath))[0]


# ─── YAML style lint ────────────────────────────────────────────────────────

def lint_yaml_style(text: str, result: FileResult):
    """Indentation lint for block-style YAML (warnings only)."""
    block_indent = None  # indent of the key owning a literal/folded scalar
    for i, line in enumerate(text.split("\n"), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        indent = len(line) - len(line.lstrip(" "))
        if block_indent is not None:
            if indent > block_indent:
                continue
            block_indent = None
        if indent % 2 != 0:
            result.warn(f"Line {i}: indentation should be in multiples of 2 spaces")
        if stripped.endswith(("|", ">", "|-", ">-", "|+", ">+")):
            block_indent = indent


# ─── Knowledge blocks ───────────────────────────────────────────────────────

def _key_str(k) -> str:
    return str(k)


def find_recursive_alias(node, where: str = "$", stack: tuple[int, ...] = ()) -> str | None:
    """Location of the first container that contains itself (YAML `&a [*a]`), else None."""
    if isinstance(node, dict):
        items = ((f"{where}.{_key_str(k)}", v) for k, v in node.items())
    elif isinstance(node, list):
        items = ((f"{where}[{i}]", v) for i, v in enumerate(node))
    else:
        return None
    if id(node) in stack:
        return where
    stack = stack + (id(node),)
    for sub, child in items:
        found = find_recursive_alias(child, sub, stack)
        if found is not None:
            return found
    return None


def _canonical(node) -> str:
    def norm(v):
        if isinstance(v, dict):
            return {_key_str(k): norm(x) for k, x in v.items()}
        if isinstance(v, list):
            return [norm(x) for x in v]
        return v
    return json.dumps(norm(node), sort_keys=True, ensure_ascii=False, default=str)


def _is_scalar(v) -> bool:
    return isinstance(v, (str, int, float, bool))


class _BlockWalker:
    """Recursive node checks for one knowledge block."""

    def __init__(self, result: FileResult, resources_dir: Path | None):
        self.result = result
        self.resources_dir = resources_dir

    def check(self, node, where: str, root: bool = False):
        """Callers must have rejected recursive aliases first (find_recursive_alias)."""
        r = self.result
        if node is None:
            r.warn(f"{where}: empty node")
            return
        if not isinstance(node, dict):
            r.error(STRUCTURE, f"{where}: node must be a mapping, got {type(node).__name__}")
            return

        qkey = "initial_question" if root else "question"
        question = node.get(qkey)
        if question is not None and not isinstance(question, str):
            r.error(STRUCTURE, f"{where}: '{qkey}' must be a string")
        summary = node.get("summary")
        if summary is not None and not isinstance(summary, str):
            r.error(STRUCTURE, f"{where}: 'summary' must be a string")

        options = node.get("options")
        option_keys: list[str] | None = None
        if options is not None:
            if not isinstance(options, list) or not all(_is_scalar(o) for o in options):
                r.error(STRUCTURE, f"{where}: 'options' must be a list of strings")
            else:
                option_keys = [_key_str(o) for o in options]
                dups = sorted({o for o in option_keys if option_keys.count(o) > 1})
                if dups:
                    r.error(STRUCTURE, f"{where}: duplicate options: {', '.join(dups)}")

        self._check_resources(node.get("resources"), where)

        paths = node.get("paths")
        if paths is None:
            if question is not None and not root:
                r.error(STRUCTURE, f"{where}: has a question but no paths")
            elif node.get("resources") is None and summary is None and not root:
                r.warn(f"{where}: leaf has neither resources nor summary")
            return
        if not isinstance(paths, dict):
            r.error(STRUCTURE, f"{where}: 'paths' must be a mapping of option -> node")
            return
        if not paths:
            r.error(STRUCTURE, f"{where}: 'paths' is empty")
            return
        if question is None and not root:
            r.warn(f"{where}: has paths but no question")

        path_keys = [_key_str(k) for k in paths]
        if option_keys is not None:
            for o in option_keys:
                if o not in path_keys:
                    r.warn(f"{where}: option '{o}' has no matching path")
            for k in path_keys:
                if k not in option_keys:
                    r.warn(f"{where}: path '{k}' is not listed in options")

        for k, child in paths.items():
            self.check(child, f"{where}.paths[{_key_str(k)}]")

    def _check_resources(self, resources, where: str):
        if resources is None:
            return
        r = self.result
        if not isinstance(resources, list) or not all(isinstance(x, str) for x in resources):
            r.error(STRUCTURE, f"{where}: 'resources' must be a list of file names")
            return
        if self.resources_dir is None:
            return
        for name in resources:
            rel = norm_relpath(name)
            if rel.startswith("resources/"):
                rel = rel[len("resources/"):]
            if not (self.resources_dir / rel).is_file():
                r.warn(f"{where}: resource not found: resources/{rel}")

    def duplicate_subtrees(self, doc: dict):
        """Warn about identical non-leaf sub-trees appearing at different paths."""
        seen: dict[str, list[str]] = {}

        def visit(node, where):
            if not isinstance(node, dict):
                return
            paths = node.get("paths")
            if not isinstance(paths, dict) or not paths:
                return
            seen.setdefault(_canonical(node), []).append(where)
            for k, child in paths.items():
                visit(child, f"{where}.paths[{_key_str(k)}]")

        paths = doc.get("paths")
        if isinstance(paths, dict):
            for k, child in paths.items():
                visit(child, f"$.paths[{_key_str(k)}]")
        for locations in seen.values():
            if len(locations) > 1:
                self.result.warn(f"identical sub-trees at {', '.join(locations)}")


def check_knowledge_block(doc: dict, result: FileResult, config: ContentConfig | None):
    meta = doc.get("metadata")
    if "metadata" in doc:
        if not isinstance(meta, dict):
            result.error(STRUCTURE, "'metadata' must be a mapping")
        elif not meta.get("author"):
            result.error(MISSING_FIELD, "Missing required field: metadata.author")
    for key in ("title",):
        if key in doc and not isinstance(doc[key], str):
            result.error(STRUCTURE, f"'{key}' must be a string")

    resources_dir = config.resources_dir if config is not None else None
    walker = _BlockWalker(result, resources_dir)
    walker.check(doc, "$", root=True)
    walker.duplicate_subtrees(doc)


# ─── Questionnaires ─────────────────────────────────────────────────────────

_question_schema = None


def load_question_schema() -> dict:
    global _question_schema
    if _question_schema is None:
        with open(SCHEMAS_DIR / QUESTION_SCHEMA_FILE, encoding="utf-8") as f:
            _question_schema = json.load(f)
    return _question_schema


def check_questionnaire(doc: dict, result: FileResult):
    if "llmConfig" in doc and not isinstance(doc["llmConfig"], dict):
        result.error(STRUCTURE, "'llmConfig' must be an object")
    meta = doc.get("metadata")
    if meta is not None and not isinstance(meta, dict):
        result.error(STRUCTURE, "'metadata' must be an object")

    if "questions" not in doc:
        return
    questions = doc["questions"]
    if not isinstance(questions, list):
        result.error(STRUCTURE, "'questions' must be a list")
        return
    if not questions:
        result.error(STRUCTURE, "'questions' is empty")
        return

    schema = load_question_schema()
    seen_ids = set()
    for i, q in enumerate(questions):
        label = f"questions[{i}]"
        try:
            jsonschema.validate(q, schema)
        except jsonschema.ValidationError as e:
            loc = "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in e.absolute_path)
            result.error(STRUCTURE, f"{label}{loc}: {e.message}")
            continue
        qid = q.get("id")
        if qid is not None:
            if qid in seen_ids:
                result.warn(f"{label}: duplicate question id '{qid}'")
            seen_ids.add(qid)
        values = [o["value"] for o in q.get("options", [])]
        dups = sorted({v for v in values if values.count(v) > 1})
        if dups:
            result.warn(f"{label}: duplicate option values: {', '.join(dups)}")
        if q["type"] in ("text", "textarea") and "options" in q:
            result.warn(f"{label}: options are ignored for type '{q['type']}'")


# ─── Category indexes ───────────────────────────────────────────────────────

def known_block_ids(config: ContentConfig) -> set[str]:
    blocks_dir = config.content_root / BLOCKS_DIR
    if not blocks_dir.is_dir():
        return set()
    return {
        file_id(rel) for rel in iter_content_files(blocks_dir, config.exclude_files, config.exclude_dirs)
        if rel.lower().endswith(YAML_EXTS)
    }


def check_category_index(doc: dict, result: FileResult, config: ContentConfig | None):
    if "blocks" not in doc:
        return
    blocks = doc["blocks"]
    if not isinstance(blocks, list) or not all(isinstance(b, str) for b in blocks):
        result.error(STRUCTURE, "'blocks' must be a list of block ids")
        return
    dups = sorted({b for b in blocks if blocks.count(b) > 1})
    if dups:
        result.warn(f"duplicate block ids: {', '.join(dups)}")
    if config is None:
        return
    known = known_block_ids(config)
    for b in blocks:
        if b not in known:
            result.warn(f"unknown block id: {b}")


# ─── File / tree validation ─────────────────────────────────────────────────

def _relpath_for(path: Path, config: ContentConfig | None) -> str:
    if config is not None:
        try:
            return norm_relpath(str(path.resolve().relative_to(config.content_root.resolve())))
        except ValueError:
            pass
    return norm_relpath(str(path))


def validate_file(path, config: ContentConfig | None = None, category: str | None = None) -> FileResult:
    """Validate one content file. Raises FileNotFoundError if it does not exist."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    relpath = _relpath_for(path, config)
    if category is None:
        category = detect_category(relpath) or detect_category(f"{path.parent.name}/{path.name}")
    result = FileResult(relpath, category)

    try:
        doc = load_document(path)
    except ParseError as e:
        result.error(PARSE, str(e))
        return result

    loop = find_recursive_alias(doc)
    if loop is not None:
        result.error(STRUCTURE, f"{loop}: recursive alias, the document must not contain cycles")
        return result

    if category is None:
        result.warn("no validation rules for this location; parsed only")
        return result

    for f in REQUIRED_FIELDS[category]:
        if f not in doc:
            result.error(MISSING_FIELD, f"Missing required field: {f}")

    expected = file_id(path.name)
    if "id" in doc and str(doc["id"]) != expected:
        result.error(ID_MISMATCH, f"id '{doc['id']}' does not match file name '{expected}'")

    if category == KNOWLEDGE_BLOCK:
        check_knowledge_block(doc, result, config)
    elif category == QUESTIONNAIRE:
        check_questionnaire(doc, result)
    elif category == CATEGORY_INDEX:
        check_category_index(doc, result, config)

    if path.suffix.lower() in YAML_EXTS:
        lint_yaml_style(path.read_text(encoding="utf-8"), result)
    return result


def discover_files(config: ContentConfig) -> list[str]:
    """Eligible content files under the content root, in deterministic order."""
    rels = iter_content_files(config.content_root, config.checksum_excludes(), config.exclude_dirs)
    return [r for r in rels if detect_category(r) is not None]


def validate_tree(config: ContentConfig) -> list[FileResult]:
    entries = walk_content(
        config.content_root,
        lambda rel, fp: validate_file(fp, config),
        relpaths=discover_files(config),
    )
    return [e.result for e in entries]


# ─── Reporting ──────────────────────────────────────────────────────────────

def print_results(results: list[FileResult], strict: bool = False):
    for r in results:
        failed = not r.valid or (strict and r.warnings)
        if not failed:
            info(f"✓ {r.relpath}")
            for w in r.warnings:
                info(f"  ⚠ {w}")
            continue
        print(f"✗ {r.relpath}", file=sys.stderr)
        for v in r.errors:
            print(f"  - {v}", file=sys.stderr)
        for w in r.warnings:
            print(f"  ⚠ {w}", file=sys.stderr)

    if len(results) > 1:
        ok = sum(1 for r in results if r.valid and not (strict and r.warnings))
        info("\n" + RULE)
        info(f"Summary: {ok}/{len(results)} files valid")


def infer_content_root(file: str) -> str | None:
    """blocks/x.yaml -> the directory holding blocks/, when the file sits in a category dir."""
    p = Path(file).resolve()
    if p.parent.name in CATEGORY_RULES:
        return str(p.parent.parent)
    return None


def run_validation(config: ContentConfig, file: str | None = None) -> list[FileResult]:
    if file:
        return [validate_file(file, config)]
    return validate_tree(config)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate knowledge content files.")
    parser.add_argument("file", nargs="?", help="Validate a single file instead of the whole content root")
    parser.add_argument("--content-root", help="Content root directory (default: $KB_CONTENT_ROOT or ./knowledge)")
    parser.add_argument("--json", action="store_true", help="Print a machine-readable report")
    parser.add_argument("--strict", action="store_true", help="Treat warnings as violations")
    args = parser.parse_args(argv)

    content_root = args.content_root
    if args.file and not content_root and not os.environ.get(ENV_CONTENT_ROOT):
        content_root = infer_content_root(args.file)
    config = load_config(content_root)

    if args.file and not os.path.exists(args.file):
        error(f"File not found: {args.file}")
        return 2
    if not args.file and not config.content_root.is_dir():
        error(f"Content root not found: {config.content_root}")
        return 2

    try:
        results = run_validation(config, args.file)
    except OSError as e:
        error(f"Could not read content: {e}")
        return 2

    if not results:
        info(f"No content files found under {config.content_root}")
        return 0

    failed = [r for r in results if not r.valid or (args.strict and r.warnings)]
    if args.json:
        emit_json({
            "valid": not failed,
            "files": [r.to_dict() for r in results],
            "summary": {"total": len(results), "valid": len(results) - len(failed)},
        })
    else:
        if not args.file:
            info(f"Validating {len(results)} file(s)...\n")
        print_results(results, strict=args.strict)

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
