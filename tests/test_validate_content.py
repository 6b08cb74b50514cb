"""Tests for the content validator (kbtools/validate_content.py)."""

import json
from collections import Counter
from pathlib import Path

import pytest

from kbtools.config import ContentConfig
from kbtools.validate_content import (
    CATEGORY_INDEX,
    ID_MISMATCH,
    KNOWLEDGE_BLOCK,
    MISSING_FIELD,
    PARSE,
    QUESTIONNAIRE,
    STRUCTURE,
    ParseError,
    detect_category,
    discover_files,
    lint_yaml_style,
    FileResult,
    load_document,
    main,
    validate_file,
    validate_tree,
)

REPO_ROOT = Path(__file__).resolve().parent.parent
SAMPLE_CONTENT = REPO_ROOT / "knowledge"

E2E_BLOCK = """\
id: e2e-testing
title: 'X'
initial_question: 'Q?'
paths:
  yes:
    resources:
      - a.md
metadata:
  author: x
"""

E2E_BLOCK_NO_METADATA = """\
id: e2e-testing
title: 'X'
initial_question: 'Q?'
paths:
  yes:
    resources:
      - a.md
"""

QUESTIONNAIRE_DOC = {
    "id": "intake",
    "title": "Intake",
    "questions": [
        {"id": "goal", "type": "text", "label": "What is the goal?"},
        {
            "id": "size",
            "type": "radio",
            "label": "Team size?",
            "options": [
                {"value": "small", "label": "1-5"},
                {"value": "other", "label": "Other", "hasTextInput": True},
            ],
        },
    ],
    "llmConfig": {"systemPrompt": "Be brief."},
}


def _write(root: Path, rel: str, text: str) -> Path:
    p = root.joinpath(*rel.split("/"))
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def _validate(root: Path, rel: str, text: str) -> FileResult:
    return validate_file(_write(root, rel, text), ContentConfig(content_root=root))


# ─── Category detection ────────────────────────────────────────────────────

class TestDetectCategory:
    @pytest.mark.parametrize("rel,expected", [
        ("blocks/a.yaml", KNOWLEDGE_BLOCK),
        ("blocks/a.yml", KNOWLEDGE_BLOCK),
        ("blocks/nested/a.yaml", KNOWLEDGE_BLOCK),
        ("questionnaires/q.json", QUESTIONNAIRE),
        ("categories/c.yaml", CATEGORY_INDEX),
        ("categories/c.json", CATEGORY_INDEX),
        ("blocks/a.json", None),
        ("questionnaires/q.yaml", None),
        ("resources/a.md", None),
        ("manifest.json", None),
    ])
    def test_detect(self, rel, expected):
        assert detect_category(rel) == expected


# ─── Parsing ───────────────────────────────────────────────────────────────

class TestLoadDocument:
    def test_yaml_mapping(self, tmp_path):
        doc = load_document(_write(tmp_path, "a.yaml", "id: a\ntitle: T\n"))
        assert doc == {"id": "a", "title": "T"}

    def test_duplicate_yaml_key_nested(self, tmp_path):
        text = "paths:\n  a:\n    summary: one\n  a:\n    summary: two\n"
        with pytest.raises(ParseError, match="duplicate key"):
            load_document(_write(tmp_path, "a.yaml", text))

    def test_merge_key_override_allowed(self, tmp_path):
        text = "base: &b\n  summary: one\nnode:\n  <<: *b\n  summary: two\n"
        doc = load_document(_write(tmp_path, "a.yaml", text))
        assert doc["node"]["summary"] == "two"

    def test_duplicate_json_key(self, tmp_path):
        with pytest.raises(ParseError, match="duplicate key"):
            load_document(_write(tmp_path, "a.json", '{"id": "a", "id": "b"}'))

    def test_top_level_list_rejected(self, tmp_path):
        with pytest.raises(ParseError, match="mapping"):
            load_document(_write(tmp_path, "a.yaml", "- a\n- b\n"))

    def test_empty_file_rejected(self, tmp_path):
        with pytest.raises(ParseError, match="empty document"):
            load_document(_write(tmp_path, "a.yaml", ""))


# ─── Knowledge blocks ──────────────────────────────────────────────────────

class TestKnowledgeBlock:
    def test_e2e_example_is_valid(self, tmp_path):
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        assert r.category == KNOWLEDGE_BLOCK
        assert r.errors == []
        assert r.valid

    def test_missing_metadata_single_violation(self, tmp_path):
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK_NO_METADATA)
        assert r.kinds() == [MISSING_FIELD]
        assert "metadata" in str(r.errors[0])

    def test_missing_resource_is_warning(self, tmp_path):
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        assert any("resource not found: resources/a.md" in w for w in r.warnings)

    def test_existing_resource_no_warning(self, tmp_path):
        _write(tmp_path, "resources/a.md", "# A\n")
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        assert not any("resource not found" in w for w in r.warnings)

    def test_id_mismatch_exactly_one(self, tmp_path):
        r = _validate(tmp_path, "blocks/other-name.yaml", E2E_BLOCK)
        assert r.kinds() == [ID_MISMATCH]

    def test_id_mismatch_does_not_stop_field_checks(self, tmp_path):
        text = E2E_BLOCK.replace("title: 'X'\n", "")
        r = _validate(tmp_path, "blocks/other-name.yaml", text)
        assert Counter(r.kinds()) == Counter({MISSING_FIELD: 1, ID_MISMATCH: 1})

    def test_all_missing_fields_reported(self, tmp_path):
        r = _validate(tmp_path, "blocks/only-id.yaml", "id: only-id\n")
        assert r.kinds() == [MISSING_FIELD] * 4
        msgs = " ".join(str(v) for v in r.errors)
        for f in ("title", "initial_question", "paths", "metadata"):
            assert f in msgs

    def test_parse_error_only(self, tmp_path):
        r = _validate(tmp_path, "blocks/broken.yaml", "id: [unclosed\ntitle: x\n")
        assert r.kinds() == [PARSE]

    def test_duplicate_path_key_is_parse_violation(self, tmp_path):
        text = E2E_BLOCK.replace(
            "paths:\n  yes:\n",
            "paths:\n  maybe:\n    summary: s\n  maybe:\n    summary: t\n  yes:\n",
        )
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", text)
        assert r.kinds() == [PARSE]

    def test_metadata_without_author(self, tmp_path):
        text = E2E_BLOCK.replace("  author: x\n", "  owner: x\n")
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", text)
        assert r.kinds() == [MISSING_FIELD]
        assert "metadata.author" in str(r.errors[0])

    def test_paths_must_be_mapping(self, tmp_path):
        text = E2E_BLOCK.replace("paths:\n  yes:\n    resources:\n      - a.md\n", "paths:\n  - a\n  - b\n")
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", text)
        assert r.kinds() == [STRUCTURE]

    def test_question_without_paths(self, tmp_path):
        text = E2E_BLOCK.replace("    resources:\n      - a.md\n", "    question: 'Then what?'\n")
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", text)
        assert r.kinds() == [STRUCTURE]
        assert "no paths" in str(r.errors[0])

    def test_options_and_paths_mismatch_warns(self, tmp_path):
        text = E2E_BLOCK.replace("paths:\n", "options:\n  - 'maybe'\npaths:\n")
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", text)
        assert r.valid
        assert any("option 'maybe' has no matching path" in w for w in r.warnings)
        assert any("is not listed in options" in w for w in r.warnings)

    def test_recursive_alias_detected(self, tmp_path):
        text = (
            "id: loop\n"
            "title: 'Loop'\n"
            "initial_question: 'Start?'\n"
            "paths:\n"
            "  a: &node\n"
            "    question: 'Again?'\n"
            "    paths:\n"
            "      again: *node\n"
            "metadata:\n"
            "  author: x\n"
        )
        r = _validate(tmp_path, "blocks/loop.yaml", text)
        assert STRUCTURE in r.kinds()
        assert any("recursive alias" in str(v) for v in r.errors)

    def test_recursive_alias_outside_paths(self, tmp_path):
        text = (
            "id: loop\n"
            "title: 'Loop'\n"
            "initial_question: 'Start?'\n"
            "paths:\n"
            "  a:\n"
            "    summary: 's'\n"
            "    extra: &e [*e]\n"
            "metadata:\n"
            "  author: x\n"
        )
        r = _validate(tmp_path, "blocks/loop.yaml", text)
        assert r.kinds() == [STRUCTURE]
        assert "$.paths.a.extra[0]: recursive alias" in str(r.errors[0])

    def test_identical_subtrees_warn(self, tmp_path):
        text = (
            "id: dup\n"
            "title: 'Dup'\n"
            "initial_question: 'Pick'\n"
            "paths:\n"
            "  a:\n"
            "    question: 'Same?'\n"
            "    paths:\n"
            "      x:\n"
            "        summary: 's'\n"
            "  b:\n"
            "    question: 'Same?'\n"
            "    paths:\n"
            "      x:\n"
            "        summary: 's'\n"
            "metadata:\n"
            "  author: x\n"
        )
        r = _validate(tmp_path, "blocks/dup.yaml", text)
        assert r.valid
        assert any("identical sub-trees at $.paths[a], $.paths[b]" in w for w in r.warnings)

    def test_odd_indentation_warns(self, tmp_path):
        text = E2E_BLOCK.replace("  author: x\n", "   author: x\n")
        r = _validate(tmp_path, "blocks/e2e-testing.yaml", text)
        assert r.valid
        assert any("multiples of 2 spaces" in w for w in r.warnings)


class TestLintYamlStyle:
    def test_block_scalar_body_skipped(self):
        r = FileResult("x.yaml", None)
        lint_yaml_style("summary: |\n   odd but inside a literal\nnext: 1\n", r)
        assert r.warnings == []


# ─── Questionnaires ────────────────────────────────────────────────────────

class TestQuestionnaire:
    def test_valid(self, tmp_path):
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(QUESTIONNAIRE_DOC))
        assert r.category == QUESTIONNAIRE
        assert r.errors == []

    def test_author_optional(self, tmp_path):
        doc = dict(QUESTIONNAIRE_DOC, metadata={})
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(doc))
        assert r.valid

    def test_missing_llm_config(self, tmp_path):
        doc = {k: v for k, v in QUESTIONNAIRE_DOC.items() if k != "llmConfig"}
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(doc))
        assert r.kinds() == [MISSING_FIELD]

    def test_radio_requires_options(self, tmp_path):
        doc = json.loads(json.dumps(QUESTIONNAIRE_DOC))
        del doc["questions"][1]["options"]
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(doc))
        assert r.kinds() == [STRUCTURE]
        assert "questions[1]" in str(r.errors[0])

    def test_unknown_question_type(self, tmp_path):
        doc = json.loads(json.dumps(QUESTIONNAIRE_DOC))
        doc["questions"][0]["type"] = "slider"
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(doc))
        assert r.kinds() == [STRUCTURE]

    def test_empty_questions(self, tmp_path):
        doc = dict(QUESTIONNAIRE_DOC, questions=[])
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(doc))
        assert r.kinds() == [STRUCTURE]

    def test_duplicate_option_values_warn(self, tmp_path):
        doc = json.loads(json.dumps(QUESTIONNAIRE_DOC))
        doc["questions"][1]["options"].append({"value": "small", "label": "Tiny"})
        r = _validate(tmp_path, "questionnaires/intake.json", json.dumps(doc))
        assert r.valid
        assert any("duplicate option values: small" in w for w in r.warnings)

    def test_id_mismatch(self, tmp_path):
        r = _validate(tmp_path, "questionnaires/other.json", json.dumps(QUESTIONNAIRE_DOC))
        assert r.kinds() == [ID_MISMATCH]


# ─── Category indexes ──────────────────────────────────────────────────────

class TestCategoryIndex:
    def test_known_and_unknown_blocks(self, tmp_path):
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        r = _validate(tmp_path, "categories/quality.yaml",
                      "id: quality\ntitle: 'Q'\nblocks:\n  - e2e-testing\n  - ghost\n")
        assert r.valid
        assert r.warnings == ["unknown block id: ghost"]

    def test_blocks_must_be_list(self, tmp_path):
        r = _validate(tmp_path, "categories/quality.json", '{"id": "quality", "title": "Q", "blocks": "x"}')
        assert r.kinds() == [STRUCTURE]


# ─── Tree validation and CLI ───────────────────────────────────────────────

class TestValidateTree:
    def test_discover_skips_other_files(self, tmp_path):
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        _write(tmp_path, "resources/a.md", "# A\n")
        _write(tmp_path, "manifest.json", "{}")
        _write(tmp_path, "questionnaires/intake.json", json.dumps(QUESTIONNAIRE_DOC))
        assert discover_files(ContentConfig(content_root=tmp_path)) == [
            "blocks/e2e-testing.yaml",
            "questionnaires/intake.json",
        ]

    def test_parse_error_does_not_abort_batch(self, tmp_path):
        _write(tmp_path, "blocks/broken.yaml", "id: [\n")
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        results = validate_tree(ContentConfig(content_root=tmp_path))
        assert [r.relpath for r in results] == ["blocks/broken.yaml", "blocks/e2e-testing.yaml"]
        assert [r.valid for r in results] == [False, True]

    def test_recursive_alias_does_not_abort_batch(self, tmp_path):
        _write(tmp_path, "blocks/a-loop.yaml", "id: a-loop\nself: &s {again: *s}\n")
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        results = validate_tree(ContentConfig(content_root=tmp_path))
        assert [r.relpath for r in results] == ["blocks/a-loop.yaml", "blocks/e2e-testing.yaml"]
        assert results[0].kinds() == [STRUCTURE]
        assert results[1].valid

    def test_repeat_runs_identical(self, tmp_path):
        _write(tmp_path, "blocks/other.yaml", E2E_BLOCK)
        cfg = ContentConfig(content_root=tmp_path)
        first = [r.to_dict() for r in validate_tree(cfg)]
        second = [r.to_dict() for r in validate_tree(cfg)]
        assert first == second

    @pytest.mark.skipif(not SAMPLE_CONTENT.exists(), reason="sample content not present")
    def test_sample_corpus_is_clean(self):
        results = validate_tree(ContentConfig(content_root=SAMPLE_CONTENT))
        assert results
        for r in results:
            assert r.errors == [], r.relpath
            assert r.warnings == [], r.relpath


class TestMain:
    @pytest.fixture(autouse=True)
    def _no_env_root(self, monkeypatch):
        monkeypatch.delenv("KB_CONTENT_ROOT", raising=False)

    def test_single_file_ok(self, tmp_path, capsys):
        p = _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        assert main([str(p)]) == 0
        assert "✓" in capsys.readouterr().out

    def test_missing_file_is_fatal(self, tmp_path, capsys):
        assert main([str(tmp_path / "blocks" / "nope.yaml")]) == 2
        assert "File not found" in capsys.readouterr().err

    def test_missing_root_is_fatal(self, tmp_path):
        assert main(["--content-root", str(tmp_path / "absent")]) == 2

    def test_tree_with_failure(self, tmp_path, capsys):
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        _write(tmp_path, "blocks/bad.yaml", E2E_BLOCK_NO_METADATA)
        assert main(["--content-root", str(tmp_path)]) == 1
        captured = capsys.readouterr()
        assert "Summary: 1/2 files valid" in captured.out
        assert "✗ blocks/bad.yaml" in captured.err
        assert "Missing required field: metadata" in captured.err

    def test_strict_fails_on_warnings(self, tmp_path):
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK)
        assert main(["--content-root", str(tmp_path)]) == 0
        assert main(["--content-root", str(tmp_path), "--strict"]) == 1

    def test_json_output(self, tmp_path, capsys):
        _write(tmp_path, "blocks/e2e-testing.yaml", E2E_BLOCK_NO_METADATA)
        assert main(["--content-root", str(tmp_path), "--json"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["valid"] is False
        assert report["files"][0]["errors"] == [
            {"kind": MISSING_FIELD, "message": "Missing required field: metadata"}
        ]

    def test_empty_root(self, tmp_path, capsys):
        assert main(["--content-root", str(tmp_path)]) == 0
        assert "No content files found" in capsys.readouterr().out
