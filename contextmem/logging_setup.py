"""Logging bootstrap for entrypoints.

Library modules only create `logging.getLogger(__name__)` loggers. Entrypoints
(the HTTP adapter, scripts) call `configure_logging` once to attach a handler
to the package logger.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def configure_logging(level=logging.INFO) -> logging.Logger:
    """Attach one stream handler to the `contextmem` logger.

    Repeated calls (for example under a reloading server) only update the level.
    """
    logger = logging.getLogger("contextmem")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
