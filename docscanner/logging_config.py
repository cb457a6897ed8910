"""Logging setup for the scanner and its command-line entry points."""

import logging
import sys
from typing import Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Configure the ``docscanner`` logger hierarchy.

    Calling this more than once replaces the previously installed handler
    instead of stacking duplicates.

    Args:
        level: Logging level name or number.

    Returns:
        The package root logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger('docscanner')
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, '_docscanner_handler', False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._docscanner_handler = True
    root.addHandler(handler)

    # OpenCV and PIL are chatty at debug level
    logging.getLogger('PIL').setLevel(logging.WARNING)

    return root
