# SPDX-License-Identifier: AGPL-3.0

import logging

from rich.logging import RichHandler

logging.basicConfig(
    format="%(message)s",
    handlers=[RichHandler(level=logging.NOTSET, show_time=False, show_path=False)],
)

logger = logging.getLogger("solmock")


class SeenOnceFilter(logging.Filter):
    """Drops records whose message was already logged through this logger."""

    def __init__(self):
        super().__init__()
        self.seen: set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if message in self.seen:
            return False
        self.seen.add(message)
        return True


# child of `logger`, so it follows the verbosity set below
logger_once = logging.getLogger("solmock.once")
logger_once.addFilter(SeenOnceFilter())


def debug(text: str) -> None:
    logger.debug(text)


def info(text: str) -> None:
    logger.info(text)


def warn(text: str) -> None:
    logger.warning(text)


def error(text: str) -> None:
    logger.error(text)


def debug_once(text: str) -> None:
    logger_once.debug(text)


def set_verbosity(verbose: int, debug_enabled: bool = False) -> None:
    """Map the countable --verbose option onto the solmock logger level."""

    if debug_enabled or verbose >= 2:
        logger.setLevel(logging.DEBUG)
    elif verbose == 1:
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(logging.WARNING)
