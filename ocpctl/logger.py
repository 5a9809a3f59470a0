import logging
import os
import time

from ocpctl.constants import LOG_LEVEL_ENV_VAR

# Create a logger
logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "WARN", "ERROR"]


def resolve_log_level(level: str = "") -> int:
    """
    Map a level name to a logging level.

    An empty name falls back to the OPENSHIFT_LOG_LEVEL environment variable,
    and an unknown name falls back to INFO.
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV_VAR, "INFO")).upper()
    if name not in LOG_LEVELS:
        name = "INFO"
    return logging.getLevelName("WARNING" if name == "WARN" else name)


def setup_logger(level: str = "", format: str = DEFAULT_FORMAT) -> None:
    log_level = resolve_log_level(level)
    logger.setLevel(log_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    # Create a console handler
    ch = logging.StreamHandler()
    ch.setLevel(log_level)

    # Timestamps are always UTC, e.g. 2024-05-01T10:00:00Z
    formatter = logging.Formatter(format, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime

    ch.setFormatter(formatter)

    logger.addHandler(ch)


setup_logger()
