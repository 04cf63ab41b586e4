"""Command-line interface for the Book Move Trainer.

Usage:
    python -m booktrainer.cli list [--color white] [--sort name-asc] [--json]
    python -m booktrainer.cli add "1. e4 e5 2. Nf3 Nc6" --name "Open game"
    python -m booktrainer.cli normalize "[Event \"x\"] 1. e4 {main} e5 1-0"
    python -m booktrainer.cli sync
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from rich.console import Console
from rich.table import Table

from booktrainer.authoring import AuthoringError, AuthoringPipeline
from booktrainer.catalog import COLOR_FILTERS, SORT_MODES, browse, color_counts
from booktrainer.config import TrainerConfig
from booktrainer.dataset import DatasetStore
from booktrainer.local_store import ExerciseStatsStore, LocalExerciseStore, LocalStorage
from booktrainer.merger import ExerciseMerger
from booktrainer.notation import format_numbered, normalize
from booktrainer.remote import RemoteExerciseClient


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _cli_list(config: TrainerConfig, query: str, color: str, sort: str, as_json: bool) -> None:
    """Print the merged exercise list as a table, or as JSON."""
    storage = LocalStorage(config.local_storage_path)
    merger = ExerciseMerger(
        DatasetStore(config.dataset_path),
        LocalExerciseStore(storage),
        RemoteExerciseClient(config.api_url, config.api_token),
    )
    exercises = merger.load_all()
    stats = ExerciseStatsStore(storage).all()
    view = browse(exercises, query, color, sort, stats)

    if as_json:
        _print_json([e.to_dict() for e in view])
        return

    counts = color_counts(exercises)
    table = Table(title=f"Exercises (white {counts['white']}, black {counts['black']})")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Color", justify="center")
    table.add_column("Plies", justify="right")
    table.add_column("Played", justify="right")
    table.add_column("Perfect", justify="right")
    for exercise in view:
        played = stats.get(exercise.id, {})
        table.add_row(
            exercise.id,
            exercise.name,
            exercise.color,
            str(len(exercise.analysis)),
            str(played.get("total", 0)),
            str(played.get("perfect", 0)),
        )
    Console().print(table)


def _pipeline(config: TrainerConfig) -> AuthoringPipeline:
    storage = LocalStorage(config.local_storage_path)
    return AuthoringPipeline(
        LocalExerciseStore(storage),
        RemoteExerciseClient(config.api_url, config.api_token),
    )


def _cli_add(config: TrainerConfig, notation: str, name: str | None, color: str, public: bool) -> None:
    """Author an exercise and print it as JSON."""
    exercise = _pipeline(config).submit(notation, name=name, color=color, make_public=public)
    _print_json(exercise.to_dict())


def _cli_normalize(notation: str) -> None:
    moves = normalize(notation)
    _print_json({"moves": moves, "numbered": format_numbered(moves)})


def _cli_sync(config: TrainerConfig) -> None:
    """Retry remote mirroring of pending local exercises."""
    pipeline = _pipeline(config)
    if not pipeline.mirrors:
        _print_json({"mirrored": [], "message": "Remote service not configured or no token"})
        return
    mirrored = pipeline.retry_pending()
    _print_json({"mirrored": [{"id": r.id, "backendId": r.backend_id} for r in mirrored]})


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for booktrainer."""
    parser = argparse.ArgumentParser(
        description="Book move trainer - replay and author opening lines"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # list subcommand
    list_parser = subparsers.add_parser("list", help="List merged exercises")
    list_parser.add_argument("--query", type=str, default="", help="Name search")
    list_parser.add_argument("--color", choices=COLOR_FILTERS, default="all")
    list_parser.add_argument("--sort", choices=SORT_MODES, default="natural")
    list_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    # add subcommand
    add_parser = subparsers.add_parser("add", help="Author a new exercise")
    add_parser.add_argument("notation", type=str, help="Moves starting with '1.'")
    add_parser.add_argument("--name", type=str, default=None, help="Display name")
    add_parser.add_argument("--color", choices=("white", "black"), default="white")
    add_parser.add_argument("--public", action="store_true", help="Share when mirrored")

    # normalize subcommand
    normalize_parser = subparsers.add_parser("normalize", help="Reduce notation to bare moves")
    normalize_parser.add_argument("notation", type=str, help="Game notation")

    # sync subcommand
    subparsers.add_parser("sync", help="Retry pending remote mirrors")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config = TrainerConfig.from_env()

    try:
        if args.command == "list":
            _cli_list(config, args.query, args.color, args.sort, args.json)
        elif args.command == "add":
            _cli_add(config, args.notation, args.name, args.color, args.public)
        elif args.command == "normalize":
            _cli_normalize(args.notation)
        elif args.command == "sync":
            _cli_sync(config)
    except AuthoringError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
