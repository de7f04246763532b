"""Preconditions that must all hold before any file is touched.

Checks run cheapest first and stop at the first failure:
lock, consumer process, archive capacity, file count, copy tool.
"""

from __future__ import annotations

import logging

from .config import ArchiverConfig
from .copier import Copier
from .inventory import list_real_files
from .outcomes import Abort, AbortReason, GuardResult
from .probes import (
    ProbeError,
    ProcessInspector,
    RunLock,
    UsageProbe,
    disk_usage_percent,
    format_usage,
    has_capacity,
)

logger = logging.getLogger("archiver.guard")


def verify_allowed_to_execute(
    config: ArchiverConfig,
    run_lock: RunLock,
    inspector: ProcessInspector,
    copier: Copier,
    usage_probe: UsageProbe = disk_usage_percent,
) -> GuardResult:
    """Run every precondition; on success the run lock is left held."""
    if not run_lock.acquire():
        return GuardResult(Abort(
            AbortReason.ALREADY_RUNNING,
            f"Another instance is already running (lock: {run_lock.lock_file}). "
            f"Only one instance is allowed to run.",
        ))

    passed = False
    try:
        result = _check_preconditions(config, inspector, copier, usage_probe)
        passed = result.ok
        return result
    finally:
        if not passed:
            run_lock.release()


def _check_preconditions(config, inspector, copier, usage_probe) -> GuardResult:
    try:
        consumer_running = inspector.is_running(config.consumer_pattern)
    except ProbeError as e:
        return GuardResult(Abort(AbortReason.CONSUMER_STILL_ACTIVE, str(e)))
    if consumer_running:
        return GuardResult(Abort(
            AbortReason.CONSUMER_STILL_ACTIVE,
            f"Consumer process ({config.consumer_pattern}) is still running. "
            f"Stop it before archiving.",
        ))

    try:
        enough_space = has_capacity(config.archive_dir, config.max_archive_usage_percent,
                                    usage_probe)
    except OSError as e:
        return GuardResult(Abort(
            AbortReason.INSUFFICIENT_SPACE,
            f"Cannot determine disk usage of {config.archive_dir}: {e}",
            path=config.archive_dir,
        ))
    if not enough_space:
        logger.error(format_usage(config.archive_dir))
        return GuardResult(Abort(
            AbortReason.INSUFFICIENT_SPACE,
            f"Not enough disk space on {config.archive_dir} "
            f"(threshold={config.max_archive_usage_percent}%).",
            path=config.archive_dir,
        ))

    try:
        real_count = len(list_real_files(config.blocks_dir, config.segment_pattern))
    except OSError as e:
        return GuardResult(Abort(
            AbortReason.SOURCE_UNREADABLE,
            f"Cannot list {config.blocks_dir}: {e}",
            path=config.blocks_dir,
        ))
    if real_count <= config.retain_count:
        return GuardResult(Abort(
            AbortReason.NOTHING_TO_DO,
            f"Nothing to do. Number of real segment files ({real_count}) "
            f"not above threshold ({config.retain_count}).",
        ))

    if not copier.is_available():
        return GuardResult(Abort(
            AbortReason.MISSING_DEPENDENCY,
            f"Copy tool is not installed or not executable at {copier.describe()}.",
        ))

    return GuardResult()
