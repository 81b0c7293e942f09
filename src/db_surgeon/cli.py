"""Command line interface.

Two subcommands:

* ``db-surgeon bookmark`` -- record the instant the two stores are
  identical.  Run it right after copying the target.
* ``db-surgeon merge`` -- merge everything the source changed since the
  bookmark into the target and print the report.

User-facing messages go to stderr; stdout carries only the report.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import TextIO

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import CONFLICT_STRATEGIES, load_config, resolve_bookmark_file
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import ConfigurationError, StoreError
from .logger import setup_logging
from .merge.assets import AssetTransfer
from .merge.bookmark import Bookmark, BookmarkFile, parse_bookmark
from .merge.engine import MergeEngine
from .merge.reporter import format_run_report, report_to_json
from .merge.resolver import create_resolver
from .schema import SchemaRegistry
from .stores import DualStore, SqlStore

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> int:
    _stderr_print(f"[FAILED] {msg}")
    return 1


def ask(
    question: str,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> bool:
    """Ask a y/n question until the answer is usable.

    End of input counts as "no".
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stderr
    while True:
        stdout.write(f"{question} (y/n) ")
        stdout.flush()
        line = stdin.readline()
        if not line:
            stdout.write("\n")
            return False
        answer = line.strip().lower()
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False
        stdout.write("Invalid response\n")


def _load_unified(config_path: str | None) -> UnifiedConfig:
    """Load .env and the YAML config files into a ``UnifiedConfig``."""
    # .env first so ${VAR} interpolation in YAML can use its values
    load_dotenv()
    try:
        config_files = discover_config_files(config_path)
        raw = load_hierarchical_config(config_path)
        unified = build_config(raw)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Configuration error: {exc}") from exc
    if config_files:
        _stderr_print(f"Configuration loaded from: {config_files[0]}")
    return unified


def _obtain_bookmark(
    bookmark_file: BookmarkFile,
    since: str | None,
    stdin: TextIO | None = None,
) -> Bookmark:
    """Read the bookmark, creating it retroactively if there is none.

    Raises:
        BookmarkError: If the bookmark cannot be read or created.
        ConfigurationError: If there is no bookmark and no way to get one.
    """
    existing = bookmark_file.read()
    if existing is not None:
        if since:
            logger.warning(
                "A bookmark already exists (%s); ignoring --since", existing
            )
        return existing

    if since:
        return bookmark_file.write(parse_bookmark(since))

    stdin = stdin or sys.stdin
    if not stdin.isatty():
        raise ConfigurationError(
            f"No bookmark at {bookmark_file.path}. Run 'db-surgeon bookmark' "
            f"after copying the database, or pass --since."
        )

    _stderr_print(f"No bookmark found at {bookmark_file.path}.")
    if not ask("Do you want to create one retroactively?", stdin=stdin):
        raise ConfigurationError("Cannot merge without a bookmark")
    while True:
        sys.stderr.write(
            "When did the two databases last match? "
            "(YYYY-MM-DD HH:MM:SS, UTC) "
        )
        sys.stderr.flush()
        line = stdin.readline()
        if not line:
            raise ConfigurationError("Cannot merge without a bookmark")
        try:
            bookmark = parse_bookmark(line)
        except ConfigurationError as exc:
            _stderr_print(str(exc))
            continue
        return bookmark_file.write(bookmark)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_merge(args: argparse.Namespace, unified: UnifiedConfig) -> int:
    """Run a full merge; returns the process exit status."""
    try:
        config = load_config(
            source_url=args.source_url,
            target_url=args.target_url,
            asset_url=args.asset_url,
            assets_dir=args.assets_dir,
            bookmark_file=args.bookmark_file,
            conflict_strategy=args.conflict_strategy,
            unified=unified,
        )
        if not unified.record_types:
            raise ConfigurationError(
                "No record types declared. Add a 'record_types' section "
                "to config.yml."
            )
        registry = SchemaRegistry.from_config(unified.record_types)
        bookmark = _obtain_bookmark(
            BookmarkFile(Path(config.bookmark_file)), args.since
        )
    except ConfigurationError as exc:
        return _fail(str(exc))

    assets = None
    if config.asset_url:
        assets = AssetTransfer(
            config.asset_url, config.assets_dir, config.asset_timeout
        )

    _stderr_print(f"Merging changes since {bookmark}")
    source = target = None
    try:
        source = SqlStore.from_url(config.source_url, "source")
        target = SqlStore.from_url(config.target_url, "target")
        engine = MergeEngine(
            stores=DualStore(source, target),
            registry=registry,
            bookmark=bookmark,
            resolver=create_resolver(config.conflict_strategy),
            assets=assets,
            max_depth=config.max_depth,
        )
        report = engine.run()
    except (ConfigurationError, StoreError) as exc:
        return _fail(str(exc))
    finally:
        for store in (source, target):
            if store is not None:
                store.dispose()

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_run_report(report))
    return 0


def cmd_bookmark(args: argparse.Namespace, unified: UnifiedConfig) -> int:
    """Create (or with confirmation, replace) the bookmark."""
    try:
        bookmark_file = BookmarkFile(
            Path(resolve_bookmark_file(args.bookmark_file, unified))
        )
        bookmark = parse_bookmark(args.date) if args.date else Bookmark.now()

        if bookmark_file.exists() and not args.force:
            _stderr_print(
                f"There is already a bookmark at {bookmark_file.path}."
            )
            if not ask("Do you want to replace it?"):
                return _fail("Bookmark was not created")

        written = bookmark_file.write(bookmark)
    except ConfigurationError as exc:
        return _fail(str(exc))

    _stderr_print(f"Bookmark created: {written} ({bookmark_file.path})")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-surgeon",
        description="Merge a diverged copy of a database back into its origin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Right after copying the live database
  db-surgeon bookmark

  # Later: merge the copy's changes into the live database
  db-surgeon merge --source-url sqlite:///copy.db --target-url mysql+pymysql://live/site

  # First run without a bookmark: say when the copy was taken
  db-surgeon merge --since "2024-03-01 09:30:00"

  # Machine-readable report
  db-surgeon merge --json > report.json

Store URLs, the asset URL and the conflict strategy can also come from
DB_SURGEON_* environment variables (.env is loaded) or .db_surgeon/config.yml.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"db-surgeon version {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        help="YAML config file (default: DB_SURGEON_CONFIG or .db_surgeon/config.yml)",
    )
    common.add_argument(
        "--bookmark-file",
        help="Bookmark location (default: .db_surgeon/bookmark)",
    )
    common.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    common.add_argument("--log-file", help="Also append log output to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    merge = sub.add_parser(
        "merge",
        parents=[common],
        help="Merge source changes since the bookmark into the target",
    )
    merge.add_argument(
        "--source-url",
        help="SQLAlchemy URL of the source store (overrides DB_SURGEON_SOURCE_URL)",
    )
    merge.add_argument(
        "--target-url",
        help="SQLAlchemy URL of the target store (overrides DB_SURGEON_TARGET_URL)",
    )
    merge.add_argument(
        "--asset-url",
        help="Base URL asset files are downloaded from",
    )
    merge.add_argument("--assets-dir", help="Local assets root directory")
    merge.add_argument(
        "--conflict-strategy",
        choices=CONFLICT_STRATEGIES,
        help="How to settle records edited in both stores (default: keep-target)",
    )
    merge.add_argument(
        "--since",
        help="Create the missing bookmark with this date before merging",
    )
    merge.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    merge.set_defaults(func=cmd_merge)

    bookmark = sub.add_parser(
        "bookmark",
        parents=[common],
        help="Record that the two stores are identical now",
    )
    bookmark.add_argument(
        "--date", help="Bookmark date instead of now (ISO 8601 or RFC 2822)"
    )
    bookmark.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing bookmark without asking",
    )
    bookmark.set_defaults(func=cmd_bookmark)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        unified = _load_unified(args.config)
    except ConfigurationError as exc:
        return _fail(str(exc))

    setup_logging(
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
        level=unified.logging.level,
    )
    return args.func(args, unified)


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
