"""
Model CLI tool for modelgen.

This tool maintains the model file of a schema:
- sync: Merge schema files into the model file
- validate: Check the model file invariants
- show: Print entities with their identifiers

Usage:
    modelgen sync schema/                    # full schema, removes missing entities
    modelgen sync schema/task.yaml --model schema/entity-model.json
    modelgen validate --model schema/entity-model.json
    modelgen show --model schema/entity-model.json --format json

Invariants:
    - Exit code 0 on success, 1 on merge or validation failure, 2 on
      malformed input (unreadable schema or model file)
    - The model file is never written when a command fails

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

import json_log_formatter
import yaml

from ..config import GeneratorSettings
from ..generator import RunReport, run
from ..model import FormatError, ModelError, ModelRegistry, validate

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BAD_INPUT = 2


def setup_logging(settings: GeneratorSettings) -> None:
    """Configure logging based on settings.

    Args:
        settings: Generator settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class ModelCLI:
    """CLI commands for model management.

    Every command returns its exit code; main() turns exceptions into codes.

    Example:
        >>> cli = ModelCLI(GeneratorSettings())
        >>> cli.validate("entity-model.json")
        0
    """

    def __init__(self, settings: GeneratorSettings) -> None:
        self.settings = settings

    def sync(
        self,
        sources: Sequence[str],
        model_path: Optional[str] = None,
        remove_missing: Optional[bool] = None,
        dry_run: bool = False,
        output_format: str = "text",
    ) -> int:
        """Merge schema sources into the model file."""
        report = run(
            self.settings,
            model_path,
            sources,
            remove_missing=remove_missing,
            dry_run=dry_run,
        )
        if output_format == "json":
            print(json.dumps(report.to_dict(), indent=2))
        else:
            _print_report(report)
        return EXIT_OK

    def validate(self, model_path: str) -> int:
        """Check the invariants of a model file."""
        registry = ModelRegistry.load(model_path)
        violations = validate(registry)
        if not violations:
            print(f"Model {model_path} is valid ({len(registry.entities)} entities)")
            return EXIT_OK

        print(f"Model validation failed with {len(violations)} error(s):")
        for violation in violations:
            print(f"  - [{violation.code}] {violation.message}")
        return EXIT_FAILURE

    def show(self, model_path: str, output_format: str = "text") -> int:
        """Print the entities of a model file with their identifiers."""
        registry = ModelRegistry.load(model_path)
        if output_format == "json":
            print(registry.to_json(), end="")
            return EXIT_OK

        print(f"Model {model_path} (version {registry.model_version})")
        for entity in registry.entities:
            print(f"  {entity.name} {entity.id} (lastPropertyId {entity.last_property_id})")
            for prop in entity.properties:
                index = f" index {prop.index_id}" if prop.index_id is not None else ""
                print(f"    {prop.name} {prop.id} {prop.type.schema_name}{index}")
            for rel in entity.relations:
                print(f"    {rel.name} {rel.id} -> {rel.target_id}")
        print(
            f"  lastEntityId {registry.last_entity_id}, lastIndexId {registry.last_index_id}, "
            f"lastRelationId {registry.last_relation_id}, {len(registry.retired_uids)} retired uids"
        )
        return EXIT_OK


def _print_report(report: RunReport) -> None:
    changes = report.changes
    if not changes:
        print("No changes detected")
    else:
        print(f"Found {len(changes)} change(s):")
        for change in changes:
            print(f"  {change}")
    if report.saved:
        print(f"Model written to {report.model_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modelgen", description="Entity model identifier tool")
    parser.add_argument("--log-level", help="Log level (default: from MODELGEN_LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Merge schema files into the model")
    sync_parser.add_argument(
        "sources", nargs="+", help="Schema files, directories, glob patterns or dir/... trees"
    )
    sync_parser.add_argument("--model", "-m", help="Model file (default: next to the first source)")
    missing = sync_parser.add_mutually_exclusive_group()
    missing.add_argument(
        "--remove-missing",
        dest="remove_missing",
        action="store_const",
        const=True,
        help="Remove entities no source declares",
    )
    missing.add_argument(
        "--keep-missing",
        dest="remove_missing",
        action="store_const",
        const=False,
        help="Keep entities no source declares",
    )
    sync_parser.add_argument("--dry-run", action="store_true", help="Don't write the model file")
    sync_parser.add_argument("--seed", type=int, help="Seed for uid generation")
    sync_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate the model file")
    validate_parser.add_argument("--model", "-m", required=True, help="Model file")

    # show command
    show_parser = subparsers.add_parser("show", help="Show entities and identifiers")
    show_parser.add_argument("--model", "-m", required=True, help="Model file")
    show_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for the model tool."""
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if getattr(args, "seed", None) is not None:
        overrides["uid_seed"] = args.seed
    settings = GeneratorSettings(**overrides)
    setup_logging(settings)

    cli = ModelCLI(settings)
    try:
        if args.command == "sync":
            code = cli.sync(
                args.sources,
                model_path=args.model,
                remove_missing=args.remove_missing,
                dry_run=args.dry_run,
                output_format=args.format,
            )
        elif args.command == "validate":
            code = cli.validate(args.model)
        else:
            code = cli.show(args.model, output_format=args.format)
    except (FormatError, OSError, ValueError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        code = EXIT_BAD_INPUT
    except ModelError as e:
        print(f"error: [{e.code}] {e.message}", file=sys.stderr)
        code = EXIT_FAILURE
    return code


if __name__ == "__main__":
    sys.exit(main())
