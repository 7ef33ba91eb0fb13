"""
Logging setup for command-line entrypoints.

Library modules only create named loggers via logging.getLogger(__name__);
handlers and levels are configured once by whichever script is running.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """
    Configure root logging for a script run.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric logging level.

    Raises:
        ValueError: If a level name is not recognised.
    """
    if isinstance(level, str):
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            raise ValueError(f"Unknown log level: {level}")
    else:
        numeric_level = level

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger(__name__).debug("Logging configured at level %s", logging.getLevelName(numeric_level))
