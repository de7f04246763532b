"""Copy step: put a segment file into the archive directory."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger("archiver.copier")


class CopyError(Exception):
    """The copy tool did not report success."""


class Copier:
    """Copies one file into a destination directory, preserving metadata."""

    def copy(self, src: Path, dest_dir: Path) -> None:
        raise NotImplementedError

    def is_available(self) -> bool:
        return True

    def describe(self) -> str:
        return type(self).__name__


class RsyncCopier(Copier):
    """Runs ``rsync -a src dest_dir/``. No timeout: a hung rsync hangs the run."""

    def __init__(self, binary: Path):
        self.binary = Path(binary)

    def is_available(self) -> bool:
        return self.binary.is_file() and os.access(self.binary, os.X_OK)

    def describe(self) -> str:
        return str(self.binary)

    def copy(self, src: Path, dest_dir: Path) -> None:
        cmd = [str(self.binary), "-a", str(src), f"{dest_dir}/"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise CopyError(f"Could not start {self.binary}: {e}") from e

        for line in (result.stdout + result.stderr).splitlines():
            if line.strip():
                logger.debug(f"copy_to_archive: {line}")

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise CopyError(f"{self.binary.name} exited {result.returncode}: {detail}")
