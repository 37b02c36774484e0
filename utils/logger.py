# This module contains a custom formatter for logging messages with different log levels.
import logging
from typing import Optional

from config import settings


class CustomFormatter(logging.Formatter):
    """
    A custom formatter for logging messages with different log levels.

    Attributes:
        grey (str): ANSI escape sequence for grey color.
        yellow (str): ANSI escape sequence for yellow color.
        red (str): ANSI escape sequence for red color.
        bold_red (str): ANSI escape sequence for bold red color.
        reset (str): ANSI escape sequence to reset color.
        fmt (str): The log message format.
        FORMATS (dict): A dictionary mapping log levels to their respective log message formats.

    Usage:
        formatter = CustomFormatter()
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
    """
    grey = "\x1b[37;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    dark_grey = "\x1b[30;1m"
    reset = "\x1b[0m"
    fmt = '[%(levelname)s] %(asctime)s - %(name)s - %(message)s'

    FORMATS = {
        logging.DEBUG: dark_grey + fmt + reset,
        logging.INFO: grey + fmt + reset,
        logging.WARNING: yellow + fmt + reset,
        logging.ERROR: red + fmt + reset,
        logging.CRITICAL: bold_red + fmt + reset
    }

    def format(self, record):
        """
        Formats the log record based on its log level.

        Args:
            record (logging.LogRecord): The log record to be formatted.

        Returns:
            str: The formatted log message.
        """
        log_fmt = self.FORMATS.get(record.levelno, self.fmt)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a module logger. Records propagate to a single colored console
    handler installed once on the root logger.

    Args:
        name: Logger name, normally ``__name__``.
        level: Level name; defaults to settings.LOG_LEVEL.

    Returns:
        logging.Logger: The configured logger.
    """
    log = logging.getLogger(name)
    log.setLevel(level or settings.LOG_LEVEL)

    root = logging.getLogger()
    if not any(getattr(h, "_social_console", False) for h in root.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(CustomFormatter())
        ch._social_console = True
        root.addHandler(ch)

    return log


def setup_file_logging(path: str, level: str = "DEBUG") -> logging.Handler:
    """
    Write all client log records to a file in addition to the console.

    Args:
        path: Log file path.
        level: Minimum level written to the file.

    Returns:
        logging.Handler: The installed handler, so callers can remove it.
    """
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter('[%(levelname)s] %(asctime)s - %(name)s - %(message)s'))

    logging.getLogger().addHandler(handler)
    return handler
