"""
Logging for the 'matdecomp' namespace.

Library modules only call logging.getLogger(__name__) and never configure handlers.
Scripts call setup_logging(); the level may be given as an int, a name such as "debug",
or left to the MATDECOMP_LOG_LEVEL environment variable (default INFO).
"""
import logging
import os
import sys
from typing import Optional, Union

LOGGER_NAME = "matdecomp"
LEVEL_ENV = "MATDECOMP_LOG_LEVEL"
FIT_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.environ.get(LEVEL_ENV, "INFO")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level {level!r}")
        return resolved
    return int(level)


def setup_logging(level: Union[int, str, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Route calibration and quantification messages to stdout (and optionally a file).

    Calling it again replaces the handlers installed by the previous call, so
    repeated fits in one session do not duplicate every line.
    """
    lvl = _resolve_level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(lvl)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    formatter = logging.Formatter(FIT_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    for h in handlers:
        h.setLevel(lvl)
        h.setFormatter(formatter)
        logger.addHandler(h)

    logger.debug("matdecomp logging at %s", logging.getLevelName(lvl))
    return logger
