"""Pick the oldest segment files beyond the retention window."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


def select_archivable(inventory: Sequence[Path], retain_count: int) -> list[Path]:
    """Return the oldest ``len(inventory) - retain_count`` entries.

    ``inventory`` must already be sorted oldest first (see
    ``list_real_files``). Works on the snapshot only.
    """
    if retain_count < 0:
        raise ValueError(f"retain_count must be >= 0, got {retain_count}")
    excess = len(inventory) - retain_count
    if excess <= 0:
        return []
    return list(inventory[:excess])
