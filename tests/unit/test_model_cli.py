"""
Unit tests for the model CLI.

Tests cover:
- sync, validate and show commands
- Exit codes for failures and malformed input
- Text and JSON log output
"""

import json
import logging

import pytest

from dbgen.modelgen.config import GeneratorSettings
from dbgen.modelgen.tools.model_cli import (
    EXIT_BAD_INPUT,
    EXIT_FAILURE,
    EXIT_OK,
    main,
    setup_logging,
)

TASK_YAML = """
entities:
  - name: Task
    properties:
      - name: id
        type: long
        id: true
      - name: text
        type: string
"""


@pytest.fixture
def schema_dir(tmp_path):
    (tmp_path / "task.yaml").write_text(TASK_YAML, encoding="utf-8")
    return tmp_path


class TestSync:
    """Tests for the sync command."""

    def test_sync_writes_model(self, schema_dir, capsys):
        """sync creates the model file next to the schema."""
        code = main(["sync", str(schema_dir), "--seed", "1"])

        model = json.loads((schema_dir / "entity-model.json").read_text(encoding="utf-8"))
        assert code == EXIT_OK
        assert model["entities"][0]["name"] == "Task"
        assert "ENTITY_ADDED" in capsys.readouterr().out

    def test_sync_dry_run(self, schema_dir):
        """--dry-run doesn't write the model."""
        code = main(["sync", str(schema_dir), "--dry-run"])

        assert code == EXIT_OK
        assert not (schema_dir / "entity-model.json").exists()

    def test_sync_json_output(self, schema_dir, capsys):
        """--format json prints the run report."""
        main(["sync", str(schema_dir / "task.yaml"), "--format", "json"])

        report = json.loads(capsys.readouterr().out)
        assert report["saved"] is True
        assert report["sources"][0]["changes"][0]["kind"] == "ENTITY_ADDED"

    def test_sync_merge_failure(self, schema_dir, capsys):
        """Merge errors exit with 1 and leave no model."""
        (schema_dir / "task.yaml").write_text(
            TASK_YAML + "  - name: task\n    properties: []\n", encoding="utf-8"
        )

        code = main(["sync", str(schema_dir)])

        assert code == EXIT_FAILURE
        assert "AMBIGUOUS_MATCH" in capsys.readouterr().err
        assert not (schema_dir / "entity-model.json").exists()

    def test_sync_malformed_schema(self, schema_dir):
        """Unparseable schema files exit with 2."""
        (schema_dir / "task.yaml").write_text("entities: [", encoding="utf-8")

        assert main(["sync", str(schema_dir)]) == EXIT_BAD_INPUT

    def test_sync_missing_source(self, tmp_path):
        """Missing sources exit with 2."""
        assert main(["sync", str(tmp_path / "nope.yaml")]) == EXIT_BAD_INPUT


class TestValidateAndShow:
    """Tests for the validate and show commands."""

    def test_validate_ok(self, schema_dir, capsys):
        """A generated model validates."""
        main(["sync", str(schema_dir)])
        capsys.readouterr()

        code = main(["validate", "--model", str(schema_dir / "entity-model.json")])

        assert code == EXIT_OK
        assert "is valid" in capsys.readouterr().out

    def test_validate_violation(self, schema_dir, capsys):
        """Invariant violations exit with 1."""
        main(["sync", str(schema_dir)])
        path = schema_dir / "entity-model.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        data["entities"][0]["properties"][0]["flags"] = 0
        path.write_text(json.dumps(data), encoding="utf-8")
        capsys.readouterr()

        code = main(["validate", "--model", str(path)])

        assert code == EXIT_FAILURE
        assert "MISSING_ID_PROPERTY" in capsys.readouterr().out

    def test_validate_malformed(self, tmp_path):
        """A malformed identifier exits with 2."""
        path = tmp_path / "entity-model.json"
        path.write_text('{"entities": [{"id": "1:x", "name": "Task"}]}', encoding="utf-8")

        assert main(["validate", "--model", str(path)]) == EXIT_BAD_INPUT

    def test_show(self, schema_dir, capsys):
        """show lists entities with identifiers."""
        main(["sync", str(schema_dir)])
        capsys.readouterr()

        code = main(["show", "--model", str(schema_dir / "entity-model.json")])

        out = capsys.readouterr().out
        assert code == EXIT_OK
        assert "Task 1:" in out
        assert "text 2:" in out

    def test_show_json(self, schema_dir, capsys):
        """show --format json prints the model file."""
        main(["sync", str(schema_dir)])
        capsys.readouterr()

        main(["show", "--model", str(schema_dir / "entity-model.json"), "--format", "json"])

        assert capsys.readouterr().out == (schema_dir / "entity-model.json").read_text(encoding="utf-8")


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for log output configuration."""

    def test_json_lines_are_valid_json(self, restore_root_logger, capsys):
        """Quotes and newlines in messages still give one JSON object per line."""
        setup_logging(GeneratorSettings(log_format="json"))
        log = logging.getLogger("modelgen.test")

        log.warning('schema "a.yaml" failed')
        log.info("first line\nsecond line")

        lines = capsys.readouterr().err.strip().splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["message"] for r in records] == [
            'schema "a.yaml" failed',
            "first line\nsecond line",
        ]

    def test_text_format(self, restore_root_logger, capsys):
        """Text format prints level and logger name."""
        setup_logging(GeneratorSettings(log_format="text", log_level="DEBUG"))

        logging.getLogger("modelgen.test").debug("merged")

        err = capsys.readouterr().err
        assert "modelgen.test - DEBUG - merged" in err
        assert restore_root_logger.level == logging.DEBUG
