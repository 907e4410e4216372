from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, default_config, load_config
from ..csvio.reader import EmptyFileError
from ..db.connection import mock_mode_enabled, open_store
from ..db.errors import StoreError
from ..logging.init import log_summary, setup_logging
from ..models.classification import ClassifiedRow
from ..models.config_models import ImportConfig, WorkflowMode
from ..models.import_batch import ImportKind
from ..models.processing_result import ImportResult
from ..services.cancellation import CancellationToken, ImportCancelled
from ..services.column_mapper import FIELD_LABELS, MappingError, load_mapping
from ..services.conflicts import ConflictDecider
from ..services.ledger import LedgerError
from ..services.orchestrator import (
    ImportOptions,
    inspect_file,
    revert_batch,
    run_building_import,
    run_k7_import,
    update_settings,
)
from ..services.progress import ProgressReporter
from ..services.summary import render_error_preview, render_summary_line, render_undo_hint

"""CLI entrypoint.

    python -m building_import buildings FILE [options]
    python -m building_import k7 FILE [options]
    python -m building_import undo [BATCH_ID] [--kind buildings|k7]
    python -m building_import settings [--add-ignore P] [--remove-ignore P] [--mode M]

Exit codes: 0 success, 2 partial (chunk errors or cancellation), 1 fatal
(config, empty file, mapping, connection, ledger errors).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

KIND_CHOICES = {"buildings": ImportKind.BUILDINGS, "k7": ImportKind.K7_SERVICES}

logger = logging.getLogger("building_import.cli")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _map_option(value: str) -> tuple[str, str]:
    header, sep, target = value.partition("=")
    if not sep or not header.strip():
        raise argparse.ArgumentTypeError(f"expected HEADER=FIELD, got {value!r}")
    return header.strip(), target.strip()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="building_import",
        description="Building registry bulk import & reconciliation",
    )
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    for name, help_text in (("buildings", "Import buildings"), ("k7", "Import K7 service records")):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("file", type=Path, help="Delimited text file (csv / tsv)")
        sp.add_argument("--mapping", type=Path, help="Saved column mapping (YAML)")
        sp.add_argument(
            "--map", dest="maps", action="append", type=_map_option, default=[],
            metavar="HEADER=FIELD", help="Assign a source column to a field (FIELD=skip removes it)",
        )
        sp.add_argument("--save-mapping", type=Path, help="Write the final column mapping (YAML)")
        sp.add_argument(
            "--mode", choices=[m.value for m in WorkflowMode],
            help="Conflict workflow (default: stored setting)",
        )
        sp.add_argument("--export-unmatched", type=Path, help="Export unmatched rows (k7 import)")
        sp.add_argument("--inspect-data", action="store_true", help="Print encoding, mapping & first rows then exit")
        sp.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging")

    up = sub.add_parser("undo", help="Revert an import batch")
    up.add_argument("batch_id", nargs="?", help="Batch id (default: latest revertible batch)")
    up.add_argument("--kind", choices=list(KIND_CHOICES), default="buildings")

    st = sub.add_parser("settings", help="Show or edit import settings")
    st.add_argument("--add-ignore", action="append", default=[], metavar="PATTERN")
    st.add_argument("--remove-ignore", action="append", default=[], metavar="PATTERN")
    st.add_argument("--mode", choices=[m.value for m in WorkflowMode])
    return p.parse_args(argv)


def _load_cfg(path: Path | None) -> ImportConfig:
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return default_config()


@contextmanager
def _sigint_cancels(token: CancellationToken) -> Iterator[None]:
    """Ctrl+C sets the token; the running chunk finishes first."""
    def _handler(signum: int, frame: Any) -> None:
        if not token.cancelled:
            logger.warning("cancellation requested, finishing current chunk")
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _prompt_decider() -> ConflictDecider | None:
    """Interactive decider on a TTY; None (everything stays blocked) otherwise."""
    if not sys.stdin.isatty():
        return None

    def _ask(row: ClassifiedRow) -> bool:
        entity = row.entity
        print(f"\nManuell geschützt: {entity.street} {entity.house_number}, "
              f"{entity.postal_code or ''} {entity.city or ''}".rstrip())
        for change in row.diff:
            label = FIELD_LABELS.get(change.field, change.field)
            print(f"  {label}: {change.old!r} -> {change.new!r}")
        answer = input("Schutz aufheben und aktualisieren? [j/N] ").strip().lower()
        return answer in ("j", "ja", "y", "yes")

    return _ask


def _import_options(args: argparse.Namespace) -> ImportOptions:
    options = ImportOptions(
        mapping_overrides=dict(args.maps),
        mode=WorkflowMode(args.mode) if args.mode else None,
        export_unmatched_to=args.export_unmatched,
        save_mapping_to=args.save_mapping,
    )
    if args.mapping is not None:
        options.saved_mapping = load_mapping(args.mapping)
    return options


def _print_inspection(args: argparse.Namespace, kind: ImportKind, options: ImportOptions, settings: Any) -> int:
    report = inspect_file(args.file, kind, settings, options)
    print(f"FILE: {report.file_name} encoding={report.encoding} delimiter={report.delimiter!r}")
    print(f"  rows={report.data_rows} ignored={report.ignored_rows}")
    for header in report.headers:
        print(f"  {header!r} -> {report.assignments.get(header, '-')}")
    if report.missing_required:
        print(f"  missing: {', '.join(report.missing_required)}")
    for cells in report.preview:
        print("  sample_row=", list(cells))
    return EXIT_SUCCESS_ALL if not report.missing_required else EXIT_FATAL


def _report(result: ImportResult, cfg: ImportConfig) -> int:
    summary_line = render_summary_line(result)
    log_summary(summary_line[len("SUMMARY "):])  # log_summary がラベルを付与
    for line in render_error_preview(result.batch, cfg.error_preview):
        logger.error(line)
    hint = render_undo_hint(result.batch)
    if hint:
        logger.info(hint)
    return EXIT_PARTIAL_FAILURE if result.exit_partial else EXIT_SUCCESS_ALL


async def _run_import(args: argparse.Namespace, cfg: ImportConfig) -> int:
    kind = KIND_CHOICES[args.command]
    options = _import_options(args)
    with open_store(cfg) as store:
        settings = await store.load_settings()
        if args.inspect_data:
            return _print_inspection(args, kind, options, settings)
        mode = options.mode or settings.default_mode
        if mode is WorkflowMode.MANUAL_REVIEW:
            options.decider = _prompt_decider()
            if options.decider is None:
                logger.debug("no TTY: blocked rows stay blocked")
        token = CancellationToken()
        runner = run_building_import if kind is ImportKind.BUILDINGS else run_k7_import
        with ProgressReporter() as progress, _sigint_cancels(token):
            result = await runner(
                args.file, store, cfg, settings, options, token=token, progress=progress,
            )
    return _report(result, cfg)


async def _run_undo(args: argparse.Namespace, cfg: ImportConfig) -> int:
    with open_store(cfg) as store:
        with ProgressReporter() as progress:
            batch = await revert_batch(
                store, args.batch_id, KIND_CHOICES[args.kind],
                chunk_size=cfg.chunk_size, progress=progress,
            )
    log_summary(
        f"reverted batch={batch.id} kind={batch.kind.value} file={batch.file_name} "
        f"deleted={batch.created} restored={batch.updated}"
    )
    return EXIT_SUCCESS_ALL


async def _run_settings(args: argparse.Namespace, cfg: ImportConfig) -> int:
    with open_store(cfg) as store:
        if args.add_ignore or args.remove_ignore or args.mode:
            settings = await update_settings(
                store,
                add_patterns=args.add_ignore,
                remove_patterns=args.remove_ignore,
                mode=WorkflowMode(args.mode) if args.mode else None,
            )
        else:
            settings = await store.load_settings()
    print(f"default_mode: {settings.default_mode.value}")
    print("ignore_patterns:")
    for pattern in settings.ignore_patterns:
        print(f"  - {pattern}")
    return EXIT_SUCCESS_ALL


_COMMANDS = {
    "buildings": _run_import,
    "k7": _run_import,
    "undo": _run_undo,
    "settings": _run_settings,
}


def main(argv: list[str] | None = None) -> int:
    # NOTE: [] が渡された場合に sys.argv[1:] を読まないよう None のときのみ参照
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = _load_cfg(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    if mock_mode_enabled():
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")

    try:
        return asyncio.run(_COMMANDS[args.command](args, cfg))
    except ImportCancelled as e:
        logger.warning(f"{e}; nothing was written")
        return EXIT_PARTIAL_FAILURE
    except (EmptyFileError, MappingError, LedgerError, StoreError, OSError) as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
