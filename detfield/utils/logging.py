"""Logging setup shared by the server and the command-line entry points."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | int = "INFO") -> None:
    """Configure the root logger with a timestamped console handler.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric level.

    Raises:
        ValueError: If the level name is unknown.
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
