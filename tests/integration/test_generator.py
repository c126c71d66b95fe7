"""
Integration tests for generator runs.

Tests cover:
- Model file creation and stability across runs
- Removal of missing entities only for full-schema runs
- Directory, glob pattern and recursive sources
- Sequential merging of several schema files
- Failed runs leaving the model file untouched
"""

import random

import pytest

from dbgen.modelgen.config import GeneratorSettings
from dbgen.modelgen.generator import is_dir_or_pattern, process, run
from dbgen.modelgen.merge import ChangeKind, parse_dict
from dbgen.modelgen.model import DuplicateUidError, ModelRegistry


def _schema(*names):
    return "entities:\n" + "".join(
        f"  - name: {name}\n"
        f"    properties:\n"
        f"      - name: id\n"
        f"        type: long\n"
        f"        id: true\n"
        for name in names
    )


def _candidates(*names, source="test"):
    return parse_dict(
        {
            "entities": [
                {"name": name, "properties": [{"name": "id", "type": "long", "id": True}]}
                for name in names
            ]
        },
        source=source,
    )


@pytest.fixture
def settings():
    return GeneratorSettings(uid_seed=1)


class TestProcess:
    """Tests for process() on an in-memory registry."""

    def test_single_source_removal_pass(self):
        """A full-schema run declaring only A removes B."""
        registry = ModelRegistry(rng=random.Random(1))
        process(registry, [_candidates("A", "B")], remove_missing=True)
        b_uid = registry.find_entity_by_name("B").uid

        report = process(registry, [_candidates("A")], remove_missing=True)

        assert report.removed_entities == ["B"]
        assert [e.name for e in registry.entities] == ["A"]
        assert b_uid in registry.retired_entity_uids
        assert report.reports[-1].of_kind(ChangeKind.ENTITY_REMOVED)[0].path == "B"

    def test_sequential_merges_keep_both(self):
        """Merging the A file and then the B file removes neither."""
        registry = ModelRegistry(rng=random.Random(1))
        process(registry, [_candidates("A", "B")], remove_missing=True)
        before = registry.to_json()

        report = process(
            registry,
            [_candidates("A", source="a.yaml"), _candidates("B", source="b.yaml")],
            remove_missing=True,
        )

        assert report.removed_entities == []
        assert registry.to_json() == before
        assert [r.source for r in report.reports] == ["a.yaml", "b.yaml"]

    def test_partial_run_keeps_missing(self):
        """Without a removal pass undeclared entities survive."""
        registry = ModelRegistry(rng=random.Random(1))
        process(registry, [_candidates("A", "B")], remove_missing=True)

        report = process(registry, [_candidates("A")], remove_missing=False)

        assert report.removed_entities == []
        assert registry.find_entity_by_name("B") is not None

    def test_ids_monotonic_across_runs(self):
        """Removed entity ids are not reused by later runs."""
        registry = ModelRegistry(rng=random.Random(1))
        process(registry, [_candidates("A", "B")], remove_missing=True)
        process(registry, [_candidates("A")], remove_missing=True)

        process(registry, [_candidates("A", "C")], remove_missing=True)

        assert registry.find_entity_by_name("C").id.id == 3
        assert registry.last_entity_id.id == 3

    def test_upgrades_version(self):
        """Runs raise the model version to the current one."""
        registry = ModelRegistry(rng=random.Random(1))
        registry.model_version = 4
        registry.minimum_parser_version = 4

        process(registry, [_candidates("A")], remove_missing=False)

        assert registry.model_version == 5
        assert registry.minimum_parser_version == 5


class TestRun:
    """Tests for run() over schema files."""

    def test_creates_model_file(self, tmp_path, settings):
        """A directory run writes entity-model.json next to the schema."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")

        report = run(settings, None, [tmp_path])

        model_path = tmp_path / "entity-model.json"
        assert report.saved
        assert report.model_path == model_path
        assert ModelRegistry.load(model_path).find_entity_by_name("A").id.id == 1

    def test_rerun_is_byte_stable(self, tmp_path, settings):
        """Running twice on an unchanged schema keeps the file identical."""
        (tmp_path / "a.yaml").write_text(_schema("A", "B"), encoding="utf-8")
        run(settings, None, [tmp_path])
        model_path = tmp_path / "entity-model.json"
        first = model_path.read_text(encoding="utf-8")

        run(GeneratorSettings(uid_seed=99), None, [tmp_path])

        assert model_path.read_text(encoding="utf-8") == first

    def test_directory_run_removes_missing(self, tmp_path, settings):
        """Entities from a deleted schema file are removed in a directory run."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        (tmp_path / "b.yaml").write_text(_schema("B"), encoding="utf-8")
        run(settings, None, [tmp_path])

        (tmp_path / "b.yaml").unlink()
        report = run(settings, None, [tmp_path])

        assert report.removed_entities == ["B"]

    def test_directory_run_keeps_entities_of_all_files(self, tmp_path, settings):
        """Entities spread over several files stay in a directory run."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        (tmp_path / "b.yaml").write_text(_schema("B"), encoding="utf-8")
        run(settings, None, [tmp_path])

        report = run(settings, None, [tmp_path])

        assert report.removed_entities == []
        registry = ModelRegistry.load(tmp_path / "entity-model.json")
        assert [e.name for e in registry.entities] == ["A", "B"]

    def test_single_file_run_keeps_missing(self, tmp_path, settings):
        """A single-file run never removes entities."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        (tmp_path / "b.yaml").write_text(_schema("B"), encoding="utf-8")
        run(settings, None, [tmp_path])

        report = run(settings, None, [tmp_path / "a.yaml"])

        assert report.removed_entities == []
        assert len(ModelRegistry.load(tmp_path / "entity-model.json").entities) == 2

    def test_failed_run_leaves_file_untouched(self, tmp_path, settings):
        """A merge error doesn't write the model file."""
        (tmp_path / "a.yaml").write_text(_schema("A", "B"), encoding="utf-8")
        run(settings, None, [tmp_path])
        model_path = tmp_path / "entity-model.json"
        before = model_path.read_text(encoding="utf-8")
        b_uid = ModelRegistry.load(model_path).find_entity_by_name("B").uid

        (tmp_path / "a.yaml").write_text(
            _schema("A", "B") + f"      - name: x\n        type: long\n        uid: {b_uid}\n",
            encoding="utf-8",
        )
        with pytest.raises(DuplicateUidError):
            run(settings, None, [tmp_path])

        assert model_path.read_text(encoding="utf-8") == before

    def test_dry_run(self, tmp_path, settings):
        """A dry run doesn't create the model file."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")

        report = run(settings, None, [tmp_path], dry_run=True)

        assert not report.saved
        assert not (tmp_path / "entity-model.json").exists()

    def test_explicit_model_path(self, tmp_path, settings):
        """The model file location can be given explicitly."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        model_path = tmp_path / "out" / "model.json"

        run(settings, model_path, [tmp_path / "a.yaml"])

        assert model_path.exists()

    def test_no_sources(self, settings):
        """At least one source is required."""
        with pytest.raises(ValueError):
            run(settings, None, [])


class TestSourceExpansion:
    """Tests for directories, glob patterns and dir/... trees as sources."""

    def test_is_dir_or_pattern(self, tmp_path):
        """Directories, patterns and dir/... name sets of files."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")

        assert is_dir_or_pattern(tmp_path)
        assert is_dir_or_pattern(f"{tmp_path}/*.yaml")
        assert is_dir_or_pattern(f"{tmp_path}/...")
        assert not is_dir_or_pattern(tmp_path / "a.yaml")

    def test_pattern_run_removes_missing(self, tmp_path, settings):
        """A glob pattern run is a full-schema run over the matching files."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        (tmp_path / "b.yaml").write_text(_schema("B"), encoding="utf-8")
        run(settings, None, [tmp_path])

        (tmp_path / "b.yaml").rename(tmp_path / "b.txt")
        report = run(settings, None, [f"{tmp_path}/*.yaml"])

        assert report.model_path == tmp_path / "entity-model.json"
        assert report.removed_entities == ["B"]

    def test_pattern_without_matches_raises(self, tmp_path, settings):
        """A pattern matching no schema file is an error, not an empty schema."""
        with pytest.raises(FileNotFoundError, match="no schema files"):
            run(settings, None, [f"{tmp_path}/*.yaml"])

        assert not (tmp_path / "entity-model.json").exists()

    def test_recursive_run_includes_subdirectories(self, tmp_path, settings):
        """dir/... reads schema files of nested directories, sorted by path."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.yaml").write_text(_schema("B"), encoding="utf-8")

        report = run(settings, None, [f"{tmp_path}/..."])

        registry = ModelRegistry.load(tmp_path / "entity-model.json")
        assert [e.name for e in registry.entities] == ["A", "B"]
        assert [r.source for r in report.reports] == [
            str(tmp_path / "a.yaml"),
            str(tmp_path / "sub" / "b.yaml"),
        ]

    def test_directory_run_is_not_recursive(self, tmp_path, settings):
        """A plain directory contributes its own files only."""
        (tmp_path / "a.yaml").write_text(_schema("A"), encoding="utf-8")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.yaml").write_text(_schema("B"), encoding="utf-8")

        run(settings, None, [tmp_path])

        registry = ModelRegistry.load(tmp_path / "entity-model.json")
        assert [e.name for e in registry.entities] == ["A"]

    def test_missing_recursive_root_raises(self, tmp_path, settings):
        """dir/... requires an existing directory."""
        with pytest.raises(FileNotFoundError):
            run(settings, None, [f"{tmp_path}/missing/..."])
