"""
Logging setup for narrative generation.

Every module logs through the shared loguru ``logger``. Entry points call
``configure_logging`` once to replace loguru's default sink with a
level-filtered stderr sink and, optionally, a JSON-lines file sink for
later inspection of a batch run.
"""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


def configure_logging(level: str = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """
    Install the stderr sink (and optional serialized file sink).

    Args:
        level: Minimum level for both sinks
        log_file: Path of a JSON-lines log file; None disables it
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(log_file), level=level.upper(), serialize=True, enqueue=True)

    logger.debug(f"Logging configured | Level: {level.upper()} | File: {log_file or 'none'}")
