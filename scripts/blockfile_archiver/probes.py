"""Host probes: archive disk usage, process table, run lock.

Each probe sits behind a small seam so tests can swap it out without
touching the real disk or process table.
"""

from __future__ import annotations

import logging
import math
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from filelock import FileLock, Timeout

logger = logging.getLogger("archiver.probes")

UsageProbe = Callable[[Path], int]


class ProbeError(Exception):
    """A probe could not determine the host state."""


def disk_usage_percent(path: Path) -> int:
    """Use% of the filesystem holding ``path``, rounded up like df."""
    usage = shutil.disk_usage(path)
    avail = usage.free
    denom = usage.used + avail
    if denom <= 0:
        return 0
    return math.ceil(usage.used * 100 / denom)


def has_capacity(path: Path, max_percent: int, probe: UsageProbe = disk_usage_percent) -> bool:
    """True while usage is at or below ``max_percent``."""
    return probe(path) <= max_percent


def _human(n: int) -> str:
    val = float(n)
    for unit in ("B", "K", "M", "G", "T"):
        if val < 1024.0 or unit == "T":
            return f"{val:.1f}{unit}"
        val /= 1024.0
    return f"{n}B"


def format_usage(path: Path) -> str:
    """One-line df -h style summary for error logs."""
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        return f"{path}: usage unavailable ({e})"
    return (
        f"{path}: size={_human(usage.total)} used={_human(usage.used)} "
        f"avail={_human(usage.free)} use%={disk_usage_percent(path)}"
    )


class ProcessInspector:
    """Answers whether a process matching a pattern is alive."""

    def is_running(self, pattern: str) -> bool:
        raise NotImplementedError


class PgrepInspector(ProcessInspector):
    """Process lookup via ``pgrep -f``, ignoring this process itself."""

    def __init__(self, pgrep: str = "pgrep"):
        self.pgrep = pgrep

    def is_running(self, pattern: str) -> bool:
        try:
            result = subprocess.run(
                [self.pgrep, "-f", pattern],
                capture_output=True, text=True, timeout=10
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise ProbeError(f"Cannot inspect process table: {e}") from e

        if result.returncode == 1:
            return False
        if result.returncode != 0:
            raise ProbeError(
                f"pgrep exited {result.returncode}: {result.stderr.strip()}"
            )

        own = os.getpid()
        pids = []
        for line in result.stdout.split("\n"):
            line = line.strip()
            if line.isdigit() and int(line) != own:
                pids.append(int(line))
        if pids:
            logger.debug(f"Processes matching {pattern!r}: {pids}")
        return bool(pids)


class RunLock:
    """Process-wide singleton lock for a migration pass."""

    def __init__(self, lock_file: Path):
        self.lock_file = Path(lock_file)
        self._lock = FileLock(str(self.lock_file), timeout=0)

    def acquire(self) -> bool:
        """Try once; False when another pass holds the lock."""
        try:
            self._lock.acquire()
        except Timeout:
            return False
        return True

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()

    @property
    def held(self) -> bool:
        return self._lock.is_locked
