#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from seedport.adapters.sqlalchemy.unit_of_work import StartupError
from seedport.app import build_engine
from seedport.config.errors import ConfigurationError
from seedport.config.logging import configure_logging
from seedport.domain.errors import ImportEngineError
from seedport.domain.importing.loader import ImportMode, LoadOptions
from seedport.domain.importing.sources import parse_records

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from seedport.app import ImportEngine
    from seedport.domain.importing.results import BatchOutcome

LOAD_COMMANDS = frozenset({"load", "load-all", "import-all"})


def _mask(value: str) -> int:
    try:
        mask = int(value, 0)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quality mask: {value!r}") from exc
    if mask < 0:
        raise argparse.ArgumentTypeError("quality mask must be non-negative")
    return mask


def _add_load_options(parser: argparse.ArgumentParser, *, default_mode: ImportMode) -> None:
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ImportMode],
        default=default_mode.value,
        help="How rows matching existing ones are written (default: %(default)s)",
    )
    parser.add_argument(
        "--accept-ql",
        type=_mask,
        help="Quality bit mask to accept (e.g. 0b1110); 0 disables quality mode",
    )
    parser.add_argument(
        "--skip-invalid",
        action="store_true",
        help="Validate the batch first and skip rows with unresolvable required references",
    )
    parser.add_argument(
        "--validate-fields",
        action="store_true",
        help="Reject rows violating field rules (standard mode only)",
    )
    parser.add_argument(
        "--no-validate-constraints",
        dest="validate_constraints",
        action="store_false",
        help="Do not reject rows violating cross-field rules",
    )


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import, reconcile and back up seed data")
    parser.add_argument("--schema", type=Path, help="Compiled schema document (SEEDPORT_SCHEMA)")
    parser.add_argument("--data-dir", type=Path, help="Data directory (SEEDPORT_DATA_DIR)")
    parser.add_argument("--no-media", action="store_true", help="Keep media URLs unresolved")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log fuzzy matches too")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Row counts, sources and readiness per entity")

    load = commands.add_parser("load", help="Load one entity from its seed file")
    load.add_argument("entity")
    load.add_argument("--source-dir", type=Path, help="Read from this directory instead")
    _add_load_options(load, default_mode=ImportMode.REPLACE)

    for name, text in (
        ("load-all", "Load every seed file in dependency order"),
        ("import-all", "Like load-all, preferring import files over seeds"),
    ):
        _add_load_options(commands.add_parser(name, help=text), default_mode=ImportMode.MERGE)

    clear = commands.add_parser("clear", help="Delete all rows of one entity")
    clear.add_argument("entity")
    commands.add_parser("clear-all", help="Delete all rows of every entity")
    commands.add_parser("reset-all", help="Clear everything, then load all seeds")

    upload = commands.add_parser("upload", help="Store a JSON file as an entity's seed file")
    upload.add_argument("entity")
    upload.add_argument("file", type=Path)

    commands.add_parser("backup", help="Export clean rows of every entity")
    restore = commands.add_parser("restore", help="Restore one entity or the whole backup")
    restore.add_argument("entity", nargs="?")

    validate = commands.add_parser("validate", help="Dry-run validation of a JSON file")
    validate.add_argument("entity")
    validate.add_argument("file", type=Path)

    conflicts = commands.add_parser("conflicts", help="Count seed records colliding with rows")
    conflicts.add_argument("entity")

    return parser.parse_args(list(argv))


def _load_options(engine: ImportEngine, args: argparse.Namespace) -> LoadOptions:
    overrides: dict[str, object] = {
        "skip_invalid": args.skip_invalid,
        "validate_fields": args.validate_fields,
        "validate_constraints": args.validate_constraints,
    }
    if args.accept_ql is not None:
        overrides["accept_ql"] = args.accept_ql
    return engine.options(mode=ImportMode(args.mode), **overrides)


def _outcome(outcome: BatchOutcome) -> dict[str, object]:
    return {name: result.to_dict() for name, result in outcome.items()}


def _dispatch(engine: ImportEngine, args: argparse.Namespace) -> object:  # noqa: PLR0911
    options = _load_options(engine, args) if args.command in LOAD_COMMANDS else None
    match args.command:
        case "status":
            return [status.to_dict() for status in engine.get_status()]
        case "load":
            return engine.load_entity(
                args.entity, source_dir=args.source_dir, options=options
            ).to_dict()
        case "load-all":
            return _outcome(engine.load_all(options=options))
        case "import-all":
            return _outcome(engine.import_all(options=options))
        case "clear":
            return {"entity": args.entity, "removed": engine.clear_entity(args.entity)}
        case "clear-all":
            return {"removed": engine.clear_all()}
        case "reset-all":
            return _outcome(engine.reset_all())
        case "upload":
            text = args.file.read_text(encoding="utf-8")
            return engine.upload_entity(args.entity, text).to_dict()
        case "backup":
            return engine.backup_all().to_dict()
        case "restore":
            if args.entity:
                return engine.restore_entity(args.entity).to_dict()
            return _outcome(engine.restore_backup())
        case "validate":
            records = parse_records(args.file.read_text(encoding="utf-8"), origin=str(args.file))
            return engine.validate_import(args.entity, records).to_dict()
        case "conflicts":
            return engine.count_seed_conflicts(args.entity).to_dict()
        case _:
            raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args = _parse_args(sys.argv[1:] if argv is None else argv)
    if parsed_args.verbose:
        logging.getLogger("seedport").setLevel(logging.DEBUG)

    try:
        engine = build_engine(
            schema_path=parsed_args.schema,
            data_dir=parsed_args.data_dir,
            with_media=not parsed_args.no_media,
        )
        payload = _dispatch(engine, parsed_args)
    except (ImportEngineError, ConfigurationError, StartupError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    configure_logging()
    main()


if __name__ == "__main__":
    run()
