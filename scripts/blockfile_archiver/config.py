"""Archiver configuration.

Settings come from a JSON file (same layout as the agents' config.json),
merged over DEFAULTS and then over any CLI overrides. The result is a frozen
ArchiverConfig built once in main() and passed to every component.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

DEFAULTS: dict[str, Any] = {
    "data_dir": "/home/bitcoin/.bitcoin",
    "segment_subdir": "blocks",
    "archive_dir": "/local/bitcoin/.bitcoin/blocks",
    "max_archive_usage_percent": 97,
    "retain_count": 1000,
    "copy_tool": "/usr/bin/rsync",
    "segment_pattern": "blk*.dat",
    "consumer_pattern": "bitcoind|bitcoin-qt|bitcoin-core",
    "lock_file": "/tmp/blockfile-archiver.lock",
}

PATH_KEYS = ("data_dir", "archive_dir", "copy_tool", "lock_file")
INT_KEYS = ("max_archive_usage_percent", "retain_count")


class ConfigError(Exception):
    """Raised when the configuration file or an override is invalid."""


@dataclass(frozen=True)
class ArchiverConfig:
    data_dir: Path
    segment_subdir: str
    archive_dir: Path
    max_archive_usage_percent: int
    retain_count: int
    copy_tool: Path
    segment_pattern: str
    consumer_pattern: str
    lock_file: Path

    @property
    def blocks_dir(self) -> Path:
        return self.data_dir / self.segment_subdir

    @classmethod
    def from_dict(cls, raw: dict[str, Any], base_dir: Optional[Path] = None) -> "ArchiverConfig":
        unknown = sorted(set(raw) - set(DEFAULTS))
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        values = dict(DEFAULTS)
        values.update(raw)

        for key in INT_KEYS:
            val = values[key]
            # bool is an int subclass; "true" is never a valid count
            if isinstance(val, bool) or not isinstance(val, int):
                raise ConfigError(f"{key} must be an integer, got {val!r}")
        if values["retain_count"] < 0:
            raise ConfigError(f"retain_count must be >= 0, got {values['retain_count']}")
        if not 0 <= values["max_archive_usage_percent"] <= 100:
            raise ConfigError(
                f"max_archive_usage_percent must be within 0..100, "
                f"got {values['max_archive_usage_percent']}"
            )

        for key in ("segment_subdir", "segment_pattern", "consumer_pattern") + PATH_KEYS:
            if not isinstance(values[key], str) or not values[key]:
                raise ConfigError(f"{key} must be a non-empty string")

        paths = {}
        for key in PATH_KEYS:
            p = Path(values[key]).expanduser()
            if not p.is_absolute() and base_dir is not None:
                p = (base_dir / p).resolve()
            paths[key] = p

        return cls(
            data_dir=paths["data_dir"],
            segment_subdir=values["segment_subdir"],
            archive_dir=paths["archive_dir"],
            max_archive_usage_percent=values["max_archive_usage_percent"],
            retain_count=values["retain_count"],
            copy_tool=paths["copy_tool"],
            segment_pattern=values["segment_pattern"],
            consumer_pattern=values["consumer_pattern"],
            lock_file=paths["lock_file"],
        )


def load_config(config_path: Optional[Path] = None,
                overrides: Optional[dict[str, Any]] = None) -> ArchiverConfig:
    """Build the run configuration from an optional JSON file plus overrides."""
    raw: dict[str, Any] = {}
    base_dir = None
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config root must be an object: {config_path}")
        base_dir = config_path.resolve().parent

    for key, val in (overrides or {}).items():
        if val is not None:
            raw[key] = val

    config = ArchiverConfig.from_dict(raw, base_dir=base_dir)
    if not config.archive_dir.is_dir():
        raise ConfigError(f"Archive directory does not exist: {config.archive_dir}")
    return config
