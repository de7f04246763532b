"""Block file archiver package.

Moves cold, append-only segment files (bitcoin-core blk*.dat) from the
primary disk to an archive disk and leaves symbolic links at the original
paths.

Usage:
    python -m blockfile_archiver --config config.json

Or import and use programmatically:
    from blockfile_archiver import load_config, run
    run(load_config(Path("config.json")))
"""

__version__ = "0.4.0"

from .config import ArchiverConfig, ConfigError, load_config  # noqa: E402
from .cli import main, run  # noqa: E402

__all__ = ["ArchiverConfig", "ConfigError", "load_config", "main", "run", "__version__"]
