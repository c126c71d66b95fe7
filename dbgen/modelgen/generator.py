"""
Generator run: load the model, merge every schema source, save.

Sequencing of one run:
    1. Load (or create) the model file and check it is valid
    2. Upgrade the model version and clear the presence markers
    3. For each source: parse, merge, finalize
    4. Full-schema runs only: remove entities no source declared, finalize
    5. Save the model file

Invariants:
    - Sources are merged one at a time into the same registry, so an entity
      declared by any source of the run counts as present
    - Entities are only removed when the run covered the whole schema
      (several sources, or one source naming a set of files such as a
      directory, a glob pattern or "dir/..."); a single-file run can't
      know whether other files still declare them
    - Nothing is written unless every finalize() succeeded

How to change safely:
    - Keep merge and finalize paired per source; finalize updates counters
      that the next merge relies on
"""

from __future__ import annotations

import glob
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .config import GeneratorSettings
from .merge import CandidateModel, ChangeKind, MergeReport, ModelChange, ModelReconciler
from .merge import load as load_candidates
from .model import ModelRegistry, finalize
from .model.finalize import collect_violations

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".yaml", ".yml", ".json")

# "schema/..." selects every schema file below schema/
RECURSION_SUFFIX = "/..."

_GLOB_CHARS = "*?["


@dataclass
class RunReport:
    """Outcome of one generator run.

    Attributes:
        model_path: Model file the run read and (unless dry) wrote
        reports: One merge report per source, in processing order, plus
            one for the removal pass when it removed entities
        removed_entities: Names of entities removed as missing
        saved: Whether the model file was written
    """

    model_path: Optional[Path] = None
    reports: List[MergeReport] = field(default_factory=list)
    removed_entities: List[str] = field(default_factory=list)
    saved: bool = False

    @property
    def changes(self) -> list:
        return [change for report in self.reports for change in report.changes]

    @property
    def warnings(self) -> list:
        return [change for report in self.reports for change in report.warnings]

    def to_dict(self) -> dict:
        return {
            "model": str(self.model_path) if self.model_path else None,
            "sources": [
                {"source": r.source, "changes": [c.to_dict() for c in r.changes]}
                for r in self.reports
            ],
            "removed_entities": list(self.removed_entities),
            "saved": self.saved,
        }


def process(
    registry: ModelRegistry,
    sources: Iterable[CandidateModel],
    *,
    remove_missing: bool,
) -> RunReport:
    """Merge candidate models into registry one after another.

    Args:
        registry: Loaded model, mutated in place
        sources: Candidate models in processing order
        remove_missing: Remove entities no source declared (full-schema run)

    Returns:
        Per-source merge reports and the removed entities

    Raises:
        MergeError: A source could not be merged
        InvariantViolationError: The merged model is inconsistent
    """
    report = RunReport()
    registry.upgrade_version()
    registry.reset_presence()

    reconciler = ModelReconciler(registry)
    for candidates in sources:
        report.reports.append(reconciler.merge(candidates))
        finalize(registry)

    if remove_missing:
        removal = MergeReport(source="removal pass")
        for entity in registry.remove_absent_entities():
            report.removed_entities.append(entity.name)
            removal.add(ModelChange(
                kind=ChangeKind.ENTITY_REMOVED,
                path=entity.name,
                old_value=str(entity.id),
                message=f"Entity '{entity.name}' {entity.id} is declared by no source, removed",
            ))
        if removal.has_changes:
            report.reports.append(removal)
        finalize(registry)

    return report


def run(
    settings: GeneratorSettings,
    model_path: Optional[Union[str, Path]],
    source_paths: Sequence[Union[str, Path]],
    *,
    remove_missing: Optional[bool] = None,
    dry_run: bool = False,
) -> RunReport:
    """Run the generator for a set of schema sources.

    Args:
        settings: Generator settings
        model_path: Model file; defaults to settings.model_file_name next to
            the first source
        source_paths: Schema files, directories, glob patterns or "dir/..."
            trees
        remove_missing: Override the full-schema detection
        dry_run: Merge and validate, but don't write the model file

    Returns:
        The run report
    """
    if not source_paths:
        raise ValueError("at least one schema source is required")

    if model_path is None:
        model_path = _default_model_path(source_paths[0], settings.model_file_name)
    model_path = Path(model_path)

    files = _expand_sources(source_paths, exclude=model_path)
    if remove_missing is None:
        remove_missing = len(source_paths) > 1 or any(is_dir_or_pattern(p) for p in source_paths)

    registry = ModelRegistry.load_or_create(model_path, rng=settings.make_rng())
    for violation in collect_violations(registry):
        logger.error(f"Invalid model loaded from {model_path}: {violation.message}")
        raise violation

    candidates = [load_candidates(path) for path in files]
    report = process(registry, candidates, remove_missing=remove_missing)
    report.model_path = model_path

    if dry_run:
        logger.info(f"Dry run, {model_path} not written")
    else:
        model_path.parent.mkdir(parents=True, exist_ok=True)
        registry.save(model_path)
        report.saved = True
    return report


def _default_model_path(source: Union[str, Path], file_name: str) -> Path:
    return _source_root(str(source)) / file_name


def is_dir_or_pattern(source: Union[str, Path]) -> bool:
    """Whether source names a set of schema files rather than one file."""
    text = str(source)
    return text.endswith(RECURSION_SUFFIX) or _has_magic(text) or Path(text).is_dir()


def _has_magic(text: str) -> bool:
    return any(c in text for c in _GLOB_CHARS)


def _source_root(text: str) -> Path:
    if text.endswith(RECURSION_SUFFIX):
        return Path(text[: -len(RECURSION_SUFFIX)] or ".")
    if _has_magic(text):
        fixed = []
        for part in Path(text).parts:
            if _has_magic(part):
                break
            fixed.append(part)
        return Path(*fixed) if fixed else Path(".")
    path = Path(text)
    return path if path.is_dir() else path.parent


def _is_schema_file(path: Path, exclude: Path) -> bool:
    return (
        path.is_file()
        and path.suffix.lower() in SOURCE_SUFFIXES
        and path.resolve() != exclude.resolve()
    )


def _expand_sources(paths: Sequence[Union[str, Path]], exclude: Path) -> List[Path]:
    """List schema files, expanding directories, glob patterns and dir/... trees.

    A directory contributes its own files only; "dir/..." walks it recursively.
    Every expansion is sorted so runs are reproducible.
    """
    files: List[Path] = []
    for raw in paths:
        text = str(raw)
        path = Path(text)
        if text.endswith(RECURSION_SUFFIX):
            root = _source_root(text)
            if not root.is_dir():
                raise FileNotFoundError(f"schema directory not found: {root}")
            found = sorted(p for p in root.rglob("*") if _is_schema_file(p, exclude))
        elif _has_magic(text):
            found = sorted(Path(p) for p in glob.glob(text) if _is_schema_file(Path(p), exclude))
            if not found:
                raise FileNotFoundError(f"no schema files match pattern: {text}")
        elif path.is_dir():
            found = sorted(p for p in path.iterdir() if _is_schema_file(p, exclude))
        elif path.is_file():
            files.append(path)
            continue
        else:
            raise FileNotFoundError(f"schema source not found: {path}")
        logger.debug(f"Found {len(found)} schema files in {text}")
        files.extend(found)
    return files
