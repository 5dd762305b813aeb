"""Logging setup for scripts and tests that drive pagegather directly."""

import logging
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Send pagegather logs to stderr at ``level``.

    Library code only creates module loggers; call this from an entry point.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("pagegather").setLevel(level)
