"""Migration engine: copy each archivable segment, then link it back.

Per file: PENDING -> CAPACITY_CHECKED -> COPIED -> LINKED_BACK -> DONE, or
ABORTED from any state. The first abort stops the whole batch; files that
already reached DONE stay migrated.
"""

from __future__ import annotations

import logging
import os
import stat
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .config import ArchiverConfig
from .copier import Copier, CopyError
from .outcomes import Abort, AbortReason, MigrationResult
from .probes import UsageProbe, disk_usage_percent, format_usage, has_capacity

LINK_TMP_PREFIX = "."
LINK_TMP_SUFFIX = ".archive-link"


class FileState(Enum):
    PENDING = "pending"
    CAPACITY_CHECKED = "capacity_checked"
    COPIED = "copied"
    LINKED_BACK = "linked_back"
    DONE = "done"
    ABORTED = "aborted"


class MigrationEngine:
    """Moves segment files to the archive directory one at a time."""

    def __init__(self, config: ArchiverConfig, copier: Copier,
                 usage_probe: UsageProbe = disk_usage_percent,
                 dry_run: bool = False):
        self.config = config
        self.copier = copier
        self.usage_probe = usage_probe
        self.dry_run = dry_run
        self.archive_dir = Path(os.path.abspath(config.archive_dir))
        self.logger = logging.getLogger("archiver.migrate")

    def migrate(self, archivable: Iterable[Path]) -> MigrationResult:
        result = MigrationResult()
        for src in archivable:
            self.logger.info(f"Found archivable file: {src}")
            abort = self._migrate_one(Path(src))
            if abort is not None:
                result.abort = abort
                break
            result.migrated.append(Path(src))
        return result

    def _advance(self, src: Path, state: FileState) -> FileState:
        self.logger.debug(f"{src.name}: {state.value}")
        return state

    def _migrate_one(self, src: Path) -> Optional[Abort]:
        self._advance(src, FileState.PENDING)
        dest = self.archive_dir / src.name

        try:
            enough_space = has_capacity(self.archive_dir,
                                        self.config.max_archive_usage_percent,
                                        self.usage_probe)
        except OSError as e:
            self._advance(src, FileState.ABORTED)
            return Abort(
                AbortReason.INSUFFICIENT_SPACE_MID_RUN,
                f"Cannot determine disk usage of {self.archive_dir}: {e}",
                path=src,
            )
        if not enough_space:
            self._advance(src, FileState.ABORTED)
            self.logger.error(format_usage(self.archive_dir))
            return Abort(
                AbortReason.INSUFFICIENT_SPACE_MID_RUN,
                f"Not enough disk space on {self.archive_dir} "
                f"(threshold={self.config.max_archive_usage_percent}%). "
                f"Aborting before {src.name}.",
                path=src,
            )
        self._advance(src, FileState.CAPACITY_CHECKED)

        if self.dry_run:
            self.logger.info(f"    DRY  {src} -> {dest}")
            return None

        try:
            dest_mode = os.lstat(dest).st_mode
        except FileNotFoundError:
            dest_mode = None
        except OSError as e:
            self._advance(src, FileState.ABORTED)
            return Abort(AbortReason.DESTINATION_CONFLICT,
                         f"Cannot inspect archive path {dest}: {e}", path=src)

        if dest_mode is not None and not stat.S_ISREG(dest_mode):
            self._advance(src, FileState.ABORTED)
            return Abort(
                AbortReason.DESTINATION_CONFLICT,
                f"Archive path {dest} exists and is not a regular file.",
                path=src,
            )
        if dest_mode is not None:
            # Left over from a pass interrupted between copy and link-back;
            # the primary file is still authoritative.
            self.logger.warning(f"    Stale archive copy {dest} found, overwriting")

        self.logger.info(f"    Copying file {src} to {self.archive_dir} ...")
        try:
            self.copier.copy(src, self.archive_dir)
        except CopyError as e:
            self._advance(src, FileState.ABORTED)
            return Abort(AbortReason.COPY_FAILED, f"Copy of {src} failed: {e}", path=src)
        self._advance(src, FileState.COPIED)

        self.logger.info(f"    Creating symlink for file {src}")
        abort = self._replace_with_symlink(src, dest)
        if abort is not None:
            self._advance(src, FileState.ABORTED)
            return abort
        self._advance(src, FileState.LINKED_BACK)

        self._advance(src, FileState.DONE)
        return None

    def _replace_with_symlink(self, src: Path, dest: Path) -> Optional[Abort]:
        """Swap ``src`` for a symlink to ``dest`` via rename in src's directory."""
        try:
            copied = stat.S_ISREG(os.lstat(dest).st_mode)
        except OSError:
            copied = False
        if not copied:
            return Abort(
                AbortReason.DESTINATION_MISSING,
                f"Destination file {dest} does not exist after copy.",
                path=src,
            )

        tmp = src.with_name(f"{LINK_TMP_PREFIX}{src.name}{LINK_TMP_SUFFIX}")
        try:
            if tmp.is_symlink() or tmp.exists():
                tmp.unlink()
            os.symlink(dest, tmp)
            os.replace(tmp, src)
        except OSError as e:
            if tmp.is_symlink():
                tmp.unlink()
            return Abort(
                AbortReason.SYMLINK_CREATION_FAILED,
                f"Symbolic link was not created for {src}: {e}",
                path=src,
            )

        if not src.is_symlink():
            return Abort(
                AbortReason.SYMLINK_CREATION_FAILED,
                f"Symbolic link was not created for {src}.",
                path=src,
            )
        return None
