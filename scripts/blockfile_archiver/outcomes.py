"""Abort reasons and stage results shared by the guard, engine and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

EXIT_OK = 0
EXIT_BENIGN = 1
EXIT_FATAL = 2
EXIT_CONFIG = 3


class AbortReason(Enum):
    ALREADY_RUNNING = "already_running"
    NOTHING_TO_DO = "nothing_to_do"
    CONSUMER_STILL_ACTIVE = "consumer_still_active"
    INSUFFICIENT_SPACE = "insufficient_space"
    INSUFFICIENT_SPACE_MID_RUN = "insufficient_space_mid_run"
    SOURCE_UNREADABLE = "source_unreadable"
    MISSING_DEPENDENCY = "missing_dependency"
    COPY_FAILED = "copy_failed"
    DESTINATION_MISSING = "destination_missing"
    DESTINATION_CONFLICT = "destination_conflict"
    SYMLINK_CREATION_FAILED = "symlink_creation_failed"

    @property
    def benign(self) -> bool:
        return self in (AbortReason.ALREADY_RUNNING, AbortReason.NOTHING_TO_DO)

    @property
    def exit_code(self) -> int:
        return EXIT_BENIGN if self.benign else EXIT_FATAL


@dataclass(frozen=True)
class Abort:
    reason: AbortReason
    message: str
    path: Optional[Path] = None


@dataclass
class GuardResult:
    abort: Optional[Abort] = None

    @property
    def ok(self) -> bool:
        return self.abort is None


@dataclass
class MigrationResult:
    migrated: list[Path] = field(default_factory=list)
    abort: Optional[Abort] = None

    @property
    def ok(self) -> bool:
        return self.abort is None


def exit_code_for(abort: Optional[Abort]) -> int:
    """Map the first abort of a run to the process exit code."""
    if abort is None:
        return EXIT_OK
    return abort.reason.exit_code
