"""Console logging for deployment scripts."""

import logging
import os

import coloredlogs

#: Libraries that log every JSON-RPC request at debug and info level
NOISY_LOGGERS = (
    "web3.providers.HTTPProvider",
    "web3.RequestManager",
    "web3.manager.RequestManager",
    "urllib3.connectionpool",
)


def setup_console_logging(default_log_level="info") -> logging.Logger:
    """Coloured console logging for a deployment run.

    The level can be overridden with ``LOG_LEVEL=debug``.

    :return:
        Root logger
    """
    level_name = os.environ.get("LOG_LEVEL", default_log_level).upper()
    level = logging.getLevelName(level_name)
    assert isinstance(level, int), f"Unknown LOG_LEVEL {level_name}"

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s %(levelname)-8s %(name)-32s %(message)s",
        datefmt="%H:%M:%S",
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()
