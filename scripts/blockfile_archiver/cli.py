#!/usr/bin/env python3
"""
Archive old segment files to a second disk and leave symlinks behind.

Moves the oldest blk*.dat files of a bitcoin-core style data directory onto
an archive disk, replacing each original with a symbolic link so the
consumer keeps reading them at their usual path. Must run while the
consumer is stopped.

Usage:
  archive-blockfiles --config config.json
  archive-blockfiles --config config.json --dry-run
  python -m blockfile_archiver --retain-count 500
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ArchiverConfig, ConfigError, load_config
from .copier import Copier, RsyncCopier
from .guard import verify_allowed_to_execute
from .inventory import list_real_files
from .migrate import MigrationEngine
from .outcomes import EXIT_CONFIG, Abort, AbortReason, exit_code_for
from .probes import PgrepInspector, ProcessInspector, RunLock, UsageProbe, disk_usage_percent
from .selection import select_archivable

LOG_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'
DATE_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

logger = logging.getLogger("archiver")


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        datefmt=DATE_TIME_FORMAT,
        stream=sys.stdout,
    )
    # ARCHIVER_LOG_LEVEL env var, default INFO
    level_name = os.environ.get("ARCHIVER_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, None)
    if isinstance(level, int) and not isinstance(level, bool):
        logger.setLevel(level)
    else:
        logger.setLevel(logging.INFO)
        logger.warning(f"Invalid ARCHIVER_LOG_LEVEL '{level_name}', defaulting to INFO")


def log_abort(abort: Abort) -> None:
    if abort.reason.benign:
        logger.info(f"{abort.message} Exiting.")
    else:
        where = f" [{abort.path}]" if abort.path else ""
        logger.error(f"{abort.reason.value}{where}: {abort.message} Exiting.")


def run(config: ArchiverConfig,
        copier: Optional[Copier] = None,
        inspector: Optional[ProcessInspector] = None,
        run_lock: Optional[RunLock] = None,
        usage_probe: UsageProbe = disk_usage_percent,
        dry_run: bool = False) -> int:
    """One archiving pass. Returns the process exit code."""
    copier = copier or RsyncCopier(config.copy_tool)
    inspector = inspector or PgrepInspector()
    run_lock = run_lock or RunLock(config.lock_file)

    guard = verify_allowed_to_execute(config, run_lock, inspector, copier, usage_probe)
    if not guard.ok:
        log_abort(guard.abort)
        return exit_code_for(guard.abort)

    try:
        try:
            inventory = list_real_files(config.blocks_dir, config.segment_pattern)
        except OSError as e:
            abort = Abort(AbortReason.SOURCE_UNREADABLE,
                          f"Cannot list {config.blocks_dir}: {e}", path=config.blocks_dir)
            log_abort(abort)
            return exit_code_for(abort)

        archivable = select_archivable(inventory, config.retain_count)
        logger.info(
            f"{len(inventory)} real segment files, retaining {config.retain_count}, "
            f"{len(archivable)} archivable"
        )

        engine = MigrationEngine(config, copier, usage_probe=usage_probe, dry_run=dry_run)
        result = engine.migrate(archivable)
    finally:
        run_lock.release()

    verb = "would be archived" if dry_run else "archived"
    logger.info(f"{len(result.migrated)} file(s) {verb}")
    if not result.ok:
        log_abort(result.abort)
    return exit_code_for(result.abort)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Archive old segment files to another disk, leaving symlinks behind"
    )
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("--retain-count", type=int,
                        help="Newest segment files to keep on the primary disk")
    parser.add_argument("--max-usage", type=int, dest="max_archive_usage_percent",
                        help="Refuse to archive above this archive disk Use%%")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be archived without changing files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    setup_logging()

    overrides = {
        "retain_count": args.retain_count,
        "max_archive_usage_percent": args.max_archive_usage_percent,
    }
    try:
        config = load_config(args.config, overrides)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG

    logger.info(
        f"blockfile-archiver {__version__}: {config.blocks_dir} -> {config.archive_dir}"
        + (" (dry run)" if args.dry_run else "")
    )
    return run(config, dry_run=args.dry_run)


if __name__ == "__main__":
    raise SystemExit(main())
