"""Logging setup: console lines on stderr, optional timestamped log file."""

import logging
import sys

LOGGER_NAME = 'relayout'


def setup_logging(level: str = 'INFO', log_file: str | None = None) -> logging.Logger:
    """
    Configure the package logger.

    Console output keeps the short "[relayout] message" form; the log file
    (useful under pythonw or the tray, where there is no console) gets a
    timestamp per line.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter('[relayout] %(message)s'))
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(
            logging.Formatter('[%(asctime)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        )
        logger.addHandler(file_handler)

    return logger


def die(msg: str) -> None:
    logging.getLogger(LOGGER_NAME).error(msg)
    sys.exit(1)
