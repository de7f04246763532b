"""Enumerate real segment files in the primary blocks directory."""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path


def list_real_files(directory: Path | str, pattern: str) -> list[Path]:
    """Return regular files in ``directory`` whose name matches ``pattern``.

    Non-recursive. Symlinks are skipped even when they point at a regular
    file, so already-archived segments never show up again. Paths are
    absolute and sorted ascending.

    Raises OSError if the directory cannot be listed.
    """
    root = Path(os.path.abspath(directory))
    found = []
    with os.scandir(root) as entries:
        for entry in entries:
            if not fnmatch.fnmatchcase(entry.name, pattern):
                continue
            if entry.is_symlink() or not entry.is_file(follow_symlinks=False):
                continue
            found.append(root / entry.name)
    return sorted(found, key=str)
